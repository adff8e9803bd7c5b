"""Pattern detectors and challenge selection over fixed windows."""

from datetime import date, datetime, timedelta, timezone

from resilientme.services.aggregator.challenges import pick_challenge, resilience_level
from resilientme.services.aggregator.patterns import (
    EntrySample,
    analyze_patterns,
    detect_ghosting,
    detect_recovery,
    detect_timing,
)


def entry(day: str, impact=5.0, category="dating", note=None, hour=12):
    ts = datetime.fromisoformat(f"{day}T{hour:02d}:00:00").replace(tzinfo=timezone.utc)
    return EntrySample(category=category, impact=impact, note=note, timestamp=ts, local_day=day)


def days_from(start: str, count: int) -> list[str]:
    first = date.fromisoformat(start)
    return [(first + timedelta(days=i)).isoformat() for i in range(count)]


def test_ghosting_needs_majority_of_dating_entries():
    """The keyword must appear in more than half of dating entries."""

    # 2024-03-04 is a Monday; spread days so timing never fires here.
    days = days_from("2024-03-04", 4)
    three_of_four = [entry(d, note="GHOSTED again" if i < 3 else "fine") for i, d in enumerate(days)]
    two_of_four = [entry(d, note="ghosted" if i < 2 else "fine") for i, d in enumerate(days)]

    assert detect_ghosting(three_of_four).description == "You've been ghosted 3 times recently"
    assert detect_ghosting(two_of_four) is None


def test_ghosting_ignores_other_categories():
    """Only dating entries count toward ghosting."""

    days = days_from("2024-03-04", 3)
    assert detect_ghosting([entry(d, category="job", note="ghost") for d in days]) is None


def test_ghosting_needs_three_hits_even_when_all_match():
    """Fewer than three hits never flag ghosting."""

    assert detect_ghosting([entry("2024-03-04", note="ghost"), entry("2024-03-05", note="ghost")]) is None


def test_timing_finds_heavy_weekday():
    """A weekday holding a third of the entries is flagged."""

    mondays = ["2024-03-04", "2024-03-11", "2024-03-18"]
    others = ["2024-03-05", "2024-03-06", "2024-03-07"]

    insight = detect_timing([entry(d) for d in mondays + others])

    assert insight.description == "Most rejections occur on Monday"


def test_timing_uses_the_local_day_not_utc():
    """Weekdays come from the device day."""

    # 23:00 UTC timestamps but the device day is what counts.
    sundays = [entry(d, hour=23) for d in ["2024-03-03", "2024-03-10", "2024-03-17"]]
    assert detect_timing(sundays).description == "Most rejections occur on Sunday"


def test_timing_threshold_is_at_least_three():
    """Small windows need at least three entries on the weekday."""

    assert detect_timing([entry("2024-03-04"), entry("2024-03-11")]) is None


def test_recovery_trend():
    """A second half at least one point lower is improvement."""

    days = days_from("2024-03-01", 4)
    improving = [entry(d, impact=i) for d, i in zip(days, [8, 8, 7, 7])]
    flat = [entry(d, impact=i) for d, i in zip(days, [8, 8, 7.5, 7.5])]

    assert detect_recovery(improving).kind == "recovery"
    assert detect_recovery(flat) is None
    assert detect_recovery(improving[:3]) is None


def test_recovery_sorts_chronologically():
    """Halves are split on time order, not input order."""

    days = days_from("2024-03-01", 4)
    shuffled = [entry(d, impact=i) for d, i in zip(days, [9, 9, 2, 2])][::-1]
    assert detect_recovery(shuffled) is not None


def test_analyze_is_deterministic_and_ordered():
    """The same window always yields the same insights in the same order."""

    mondays = ["2024-03-04", "2024-03-11", "2024-03-18", "2024-03-25"]
    window = [entry(d, impact=9 - i * 2, note="ghosted") for i, d in enumerate(mondays)]

    kinds = [i.kind for i in analyze_patterns(window)]

    assert kinds == ["ghosting", "timing", "recovery"]
    assert analyze_patterns(window) == analyze_patterns(list(window))


def test_resilience_levels():
    """Lower averages map to higher levels."""

    assert resilience_level([]) == "advanced"
    assert resilience_level([entry("2024-03-04", impact=5)]) == "intermediate"
    assert resilience_level([entry("2024-03-04", impact=7)]) == "beginner"


def test_pick_challenge_from_week_category_and_fortnight_level():
    """Category comes from the week and level from the fortnight."""

    week = [entry("2024-03-04", category="job", impact=5), entry("2024-03-05", category="job", impact=5)]

    challenge = pick_challenge(week, week)

    assert challenge["title"] == "Network Expansion"
    assert challenge["difficulty"] == "intermediate"


def test_pick_challenge_falls_back_to_self_care():
    """Combinations without a template get the self-care challenge."""

    challenge = pick_challenge([], [])
    assert challenge["title"] == "Self-Care Check"
    assert challenge["difficulty"] == "beginner"
