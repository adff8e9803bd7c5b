"""Aggregator bucket arithmetic, idempotency and derived state."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from resilientme.common.errors import Internal
from resilientme.common.events import NOTIFICATIONS_REQUESTED
from resilientme.common.transactions import StaleWrite
from resilientme.services.aggregator.models import AggregateBucket, Challenge, DerivedScore, OutboxEvent
from resilientme.services.aggregator.patterns import EntrySample
from resilientme.services.aggregator.service import AggregatorService, compute_score, followup_task_id

NOW = datetime(2024, 3, 10, 8, tzinfo=timezone.utc)


class FakeLedger:
    """Returns canned windows and records what was asked for."""

    def __init__(self, entries=None, fail=False):
        self.entries = entries or []
        self.fail = fail
        self.calls = []

    async def recent_entries(self, owner_id, since=None, limit=None):
        self.calls.append((owner_id, since, limit))
        if self.fail:
            raise Internal("ledger unavailable")
        window = [e for e in self.entries if since is None or e.timestamp >= since]
        return window[:limit] if limit else window


def sample(impact, days_ago=1, category="dating", note=None):
    ts = NOW - timedelta(days=days_ago)
    return EntrySample(category=category, impact=impact, note=note, timestamp=ts, local_day=ts.date().isoformat())


def test_bucket_sums_entries_of_one_local_day(session_factory, entry_event):
    """Entries on the same device day land in one bucket."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    for impact in (2, 5, 9):
        assert service.apply_entry(entry_event(impact=impact), now=NOW) is True

    with session_factory() as db:
        bucket = db.get(AggregateBucket, ("owner-1", "2024-03-04"))
    assert bucket.total_count == 3
    assert bucket.sum_impact == 16
    assert bucket.version == 3


def test_redelivered_event_is_not_double_counted(session_factory, entry_event):
    """A redelivered envelope must not move the bucket twice."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    event = entry_event(impact=9)

    assert service.apply_entry(event, now=NOW) is True
    assert service.apply_entry(event, now=NOW) is False

    with session_factory() as db:
        bucket = db.get(AggregateBucket, ("owner-1", "2024-03-04"))
        followups = db.execute(select(OutboxEvent)).scalars().all()
    assert (bucket.total_count, bucket.sum_impact) == (1, 9)
    assert len(followups) == 1


def test_days_and_owners_get_separate_buckets(session_factory, entry_event):
    """Buckets are keyed by owner and local day."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    service.apply_entry(entry_event(local_day="2024-03-04"), now=NOW)
    service.apply_entry(entry_event(local_day="2024-03-05"), now=NOW)
    service.apply_entry(entry_event(owner_id="owner-2", local_day="2024-03-04"), now=NOW)

    assert [b.day for b in service.get_buckets("owner-1")] == ["2024-03-04", "2024-03-05"]
    assert [b.day for b in service.get_buckets("owner-1", start="2024-03-05")] == ["2024-03-05"]
    assert len(service.get_buckets("owner-2")) == 1


def test_high_impact_entry_requests_one_followup(session_factory, entry_event):
    """High impact queues exactly one follow-up request in the outbox."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    event = entry_event(impact=7)
    service.apply_entry(event, now=NOW)
    service.apply_entry(entry_event(impact=6.9), now=NOW)

    with session_factory() as db:
        rows = db.execute(select(OutboxEvent)).scalars().all()
    assert len(rows) == 1
    row = rows[0]
    assert row.topic == NOTIFICATIONS_REQUESTED
    payload = row.payload["payload"]
    assert payload["task_id"] == followup_task_id(event.aggregate_id)
    assert payload["run_at"] == (NOW + timedelta(hours=24)).isoformat()
    assert payload["data"] == {"type": "recovery-followup"}


def test_contended_bucket_gives_up_with_internal(session_factory, entry_event, monkeypatch):
    """A bucket that keeps losing the version race ends in Internal."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    service.apply_entry(entry_event(), now=NOW)

    def always_stale(db, statement):
        raise StaleWrite("version moved")

    monkeypatch.setattr("resilientme.services.aggregator.service.guarded_update", always_stale)
    with pytest.raises(Internal):
        service.apply_entry(entry_event(), now=NOW)

    with session_factory() as db:
        assert db.get(AggregateBucket, ("owner-1", "2024-03-04")).total_count == 1


async def test_handler_swallows_exhaustion_and_skips_score(session_factory, entry_event, monkeypatch):
    """The consumer logs exhaustion instead of failing the ledger write."""

    ledger = FakeLedger()
    service = AggregatorService(session_factory, ledger=ledger)

    def exhausted(event, now=None):
        raise Internal("bucket_increment gave up")

    monkeypatch.setattr(service, "apply_entry", exhausted)
    await service.handle_entry_created(entry_event())

    assert ledger.calls == []


def test_score_formula():
    """Score is 100 minus seven times the average, floored at 5."""

    assert compute_score([]) == (100.0, 0.0)
    assert compute_score([5.0]) == (65.0, 5.0)
    assert compute_score([10.0, 10.0])[0] == 30.0
    assert compute_score([14.0])[0] == 5.0


async def test_refresh_score_uses_trailing_week(session_factory):
    """Only the trailing week feeds the score."""

    ledger = FakeLedger([sample(5, days_ago=1), sample(3, days_ago=2), sample(10, days_ago=9)])
    service = AggregatorService(session_factory, ledger=ledger)

    row = await service.refresh_score("owner-1", now=NOW)

    assert row.score == pytest.approx(72.0)
    assert row.window_count == 2
    assert ledger.calls[0][1] == NOW - timedelta(days=7)
    assert service.get_score("owner-1").average_impact == pytest.approx(4.0)


async def test_score_failure_does_not_undo_bucket(session_factory, entry_event):
    """A failed score refresh leaves the committed bucket alone."""

    service = AggregatorService(session_factory, ledger=FakeLedger(fail=True))

    await service.handle_entry_created(entry_event(impact=4))

    assert service.get_buckets("owner-1")[0].total_count == 1
    assert service.get_score("owner-1") is None


async def test_insights_are_overwritten(session_factory):
    """A refresh replaces the previous insight set."""

    ghosted = [sample(6, days_ago=i % 6 + 1, note="Got ghosted") for i in range(4)]
    ledger = FakeLedger(ghosted)
    service = AggregatorService(session_factory, ledger=ledger)

    first = await service.refresh_insights("owner-1", now=NOW)
    ledger.entries = []
    second = await service.refresh_insights("owner-1", now=NOW)

    assert "ghosting" in [i["kind"] for i in first]
    assert second == []
    assert service.get_insights("owner-1") == []
    assert ledger.calls[0][2] == 200


async def test_daily_challenges_for_scored_owners(session_factory):
    """Each scored owner gets one challenge for today."""

    ledger = FakeLedger([sample(2, days_ago=1, category="job"), sample(3, days_ago=3, category="job")])
    service = AggregatorService(session_factory, ledger=ledger)
    with session_factory() as db:
        db.add(DerivedScore(owner_id="owner-1", score=80.0, average_impact=2.5, window_count=2))
        db.commit()

    assert await service.generate_daily_challenges(now=NOW) == 1
    assert await service.generate_daily_challenges(now=NOW) == 1

    with session_factory() as db:
        challenges = db.execute(select(Challenge)).scalars().all()
    assert len(challenges) == 1
    # Low average impact means advanced, which has no job template.
    assert challenges[0].title == "Self-Care Check"
    assert challenges[0].day == "2024-03-10"


def test_delete_owner_data(session_factory, entry_event):
    """Account deletion removes every aggregate of the owner."""

    service = AggregatorService(session_factory, ledger=FakeLedger())
    service.apply_entry(entry_event(), now=NOW)

    assert service.delete_owner_data("owner-1")["aggregates"] == 1
    assert service.get_buckets("owner-1") == []
