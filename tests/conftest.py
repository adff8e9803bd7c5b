"""Shared fixtures: in-memory SQLite tables and fakeredis."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("ADMIN_API_KEY", "admin-key")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("SERVICE_NAME", "tests")

from datetime import datetime, timezone  # noqa: E402
from uuid import uuid4  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from resilientme.common.db import Base  # noqa: E402
from resilientme.common.events import ENTRIES_CREATED, EventEnvelope  # noqa: E402
from resilientme.services.aggregator import models as aggregator_models  # noqa: E402,F401
from resilientme.services.community import models as community_models  # noqa: E402,F401
from resilientme.services.ledger import models as ledger_models  # noqa: E402,F401
from resilientme.services.notification import models as notification_models  # noqa: E402,F401


@pytest.fixture
def session_factory():
    """Fresh schema per test on one shared in-memory connection."""

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def rdb():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def entry_event():
    """Factory for `entries.created` envelopes shaped like the ledger's outbox rows."""

    def make(owner_id="owner-1", impact=5.0, local_day="2024-03-04", entry_id=None, note=None):
        entry_id = entry_id or str(uuid4())
        timestamp = datetime.fromisoformat(f"{local_day}T12:00:00").replace(tzinfo=timezone.utc)
        return EventEnvelope(
            event_id=f"{ENTRIES_CREATED}:{entry_id}",
            event_type=ENTRIES_CREATED,
            owner_id=owner_id,
            aggregate_id=entry_id,
            payload={
                "id": entry_id,
                "owner_id": owner_id,
                "category": "dating",
                "impact": impact,
                "note": note,
                "timestamp": timestamp.isoformat(),
                "local_day": local_day,
            },
        )

    return make
