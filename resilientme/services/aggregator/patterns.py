"""Stateless heuristics turning an owner's recent entries into insights.

Each detector looks at the same window independently and returns an
`Insight` or `None`; `analyze_patterns` runs them all in a fixed order so the
output is deterministic for a given window.
"""

from collections import Counter
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Callable, Iterable

GHOST_KEYWORD = "ghost"
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass(frozen=True)
class EntrySample:
    """The slice of an entry the detectors need."""

    category: str
    impact: float
    note: str | None
    timestamp: datetime
    local_day: str

    @classmethod
    def from_record(cls, record: dict) -> "EntrySample":
        timestamp = record["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        return cls(
            category=record["category"],
            impact=float(record["impact"]),
            note=record.get("note"),
            timestamp=timestamp,
            local_day=record["local_day"],
        )

    @property
    def weekday(self) -> int:
        """0 = Sunday .. 6 = Saturday, on the entry's own calendar day."""

        return (date.fromisoformat(self.local_day).weekday() + 1) % 7


@dataclass(frozen=True)
class Insight:
    kind: str
    title: str
    description: str
    insight: str
    actionable: str

    def to_dict(self) -> dict:
        return asdict(self)


def detect_ghosting(entries: list[EntrySample], keyword: str = GHOST_KEYWORD) -> Insight | None:
    """Keyword occurs in 3+ dating notes and in more than half of dating entries."""

    dating = [e for e in entries if e.category == "dating"]
    hits = sum(1 for e in dating if keyword in (e.note or "").lower())
    if hits < 3 or hits <= max(1, len(dating) // 2):
        return None
    return Insight(
        kind="ghosting",
        title="Ghosting Pattern Detected",
        description=f"You've been ghosted {hits} times recently",
        insight="This is about their communication style, not your worth",
        actionable="Try apps that require more investment upfront",
    )


def detect_timing(entries: list[EntrySample]) -> Insight | None:
    """The busiest weekday holds at least max(3, total // 3) entries."""

    if not entries:
        return None
    counts = Counter(e.weekday for e in entries)
    # Ties go to the earliest weekday, Sunday first.
    busiest = max(sorted(counts), key=lambda day: counts[day])
    if counts[busiest] < max(3, len(entries) // 3):
        return None
    return Insight(
        kind="timing",
        title="Timing Pattern",
        description=f"Most rejections occur on {WEEKDAY_NAMES[busiest]}",
        insight="Consider adjusting outreach timing",
        actionable="Avoid sending important messages on heavy days",
    )


def detect_recovery(entries: list[EntrySample], min_entries: int = 4, margin: float = 1.0) -> Insight | None:
    """Second half of the chronological impacts averages `margin` or more below the first."""

    if len(entries) < min_entries:
        return None
    impacts = [e.impact for e in sorted(entries, key=lambda e: e.timestamp)]
    half = len(impacts) // 2
    first_avg = sum(impacts[:half]) / half
    second_avg = sum(impacts[half:]) / (len(impacts) - half)
    if second_avg > first_avg - margin:
        return None
    return Insight(
        kind="recovery",
        title="Recovery Improving",
        description="Average impact decreased over time",
        insight="You're building resilience",
        actionable="Keep consistent with small daily actions",
    )


DETECTORS: list[Callable[[list[EntrySample]], Insight | None]] = [
    detect_ghosting,
    detect_timing,
    detect_recovery,
]


def analyze_patterns(entries: Iterable[EntrySample], detectors=None) -> list[Insight]:
    window = list(entries)
    found = (detector(window) for detector in (detectors or DETECTORS))
    return [insight for insight in found if insight is not None]
