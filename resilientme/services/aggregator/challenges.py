"""Daily challenge selection from an owner's recent entries."""

from collections import Counter

from resilientme.services.aggregator.patterns import EntrySample

BEGINNER = "beginner"
INTERMEDIATE = "intermediate"
ADVANCED = "advanced"

_CHALLENGES = {
    ("dating", BEGINNER): {
        "title": "Small Social Step",
        "description": "Start a conversation with one new person today",
        "category": "social",
        "points": 10,
        "time_estimate": "5 minutes",
    },
    ("dating", INTERMEDIATE): {
        "title": "Confidence Builder",
        "description": "Ask someone for their number or social media",
        "category": "dating",
        "points": 25,
        "time_estimate": "10 minutes",
    },
    ("job", BEGINNER): {
        "title": "Application Momentum",
        "description": "Apply to 3 jobs today, focus on quality",
        "category": "job",
        "points": 15,
        "time_estimate": "30 minutes",
    },
    ("job", INTERMEDIATE): {
        "title": "Network Expansion",
        "description": "Reach out to 2 people in your field on LinkedIn",
        "category": "job",
        "points": 30,
        "time_estimate": "20 minutes",
    },
}

_SELF_CARE = {
    "title": "Self-Care Check",
    "description": "Do one thing today that makes you feel good",
    "category": "other",
    "points": 10,
    "time_estimate": "15 minutes",
}


def resilience_level(entries: list[EntrySample]) -> str:
    """Lower average impact over the window means a higher level."""

    average = sum(e.impact for e in entries) / max(1, len(entries))
    if average < 4:
        return ADVANCED
    if average < 7:
        return INTERMEDIATE
    return BEGINNER


def most_common_category(entries: list[EntrySample], default: str = "social") -> str:
    if not entries:
        return default
    counts = Counter(e.category for e in entries)
    return max(sorted(counts), key=lambda category: counts[category])


def pick_challenge(week: list[EntrySample], fortnight: list[EntrySample]) -> dict:
    """Challenge for today: category from the last 7 days, level from the last 14."""

    level = resilience_level(fortnight)
    template = _CHALLENGES.get((most_common_category(week), level))
    if template is None:
        return {**_SELF_CARE, "difficulty": BEGINNER}
    return {**template, "difficulty": level}
