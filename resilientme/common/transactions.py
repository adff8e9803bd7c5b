"""Optimistic read-modify-write transactions with capped retries.

Shared counters (aggregate buckets, post counters) are never locked. A unit of
work reads a row with its `version`, writes back guarded by
`WHERE version = <read version>`, and raises `StaleWrite` when another writer
got there first. `run_optimistic` replays the whole unit in a fresh session.
"""

from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError

from resilientme.common.config import settings
from resilientme.common.errors import Internal
from resilientme.common.logging import logger
from resilientme.common.metrics import transaction_conflicts_total, transaction_exhausted_total

T = TypeVar("T")


class StaleWrite(Exception):
    """A guarded update matched no row: the version moved under us."""


def guarded_update(db, statement) -> None:
    """Execute a version-guarded UPDATE and insist it hit exactly one row."""

    result = db.execute(statement)
    if result.rowcount != 1:
        raise StaleWrite(f"guarded update matched {result.rowcount} rows")


def run_optimistic(
    session_factory,
    work: Callable[..., T],
    operation: str,
    max_attempts: int | None = None,
) -> T:
    """Run `work(db)` and commit, retrying on version or insert races.

    `IntegrityError` counts as a conflict too: two writers inserting the same
    first row for a key race on the primary key, and the loser retries as an
    update. Exhaustion raises `Internal`.
    """

    attempts = max_attempts or settings.transaction_max_attempts
    for attempt in range(1, attempts + 1):
        with session_factory() as db:
            try:
                result = work(db)
                db.commit()
                return result
            except (StaleWrite, IntegrityError) as exc:
                db.rollback()
                transaction_conflicts_total.labels(service=settings.service_name, operation=operation).inc()
                logger.warning(
                    "transaction_conflict operation=%s attempt=%s/%s error=%s",
                    operation,
                    attempt,
                    attempts,
                    exc,
                )
    transaction_exhausted_total.labels(service=settings.service_name, operation=operation).inc()
    raise Internal(f"{operation} gave up after {attempts} conflicting attempts")
