"""Aggregator persistence models (buckets, derived state + inbox/outbox)."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from resilientme.common.db import Base, JsonType


class AggregateBucket(Base):
    """Per-owner, per-local-day counters; written only through a version-guarded update."""

    __tablename__ = "aggregate_buckets"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)
    total_count: Mapped[int] = mapped_column(Integer, default=0)
    sum_impact: Mapped[float] = mapped_column(Float, default=0.0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DerivedScore(Base):
    """Resilience score recomputed from the trailing entry window; last writer wins."""

    __tablename__ = "derived_scores"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    score: Mapped[float] = mapped_column(Float)
    average_impact: Mapped[float] = mapped_column(Float)
    window_count: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class InsightSet(Base):
    """Latest pattern-detector output for an owner, overwritten wholesale."""

    __tablename__ = "insight_sets"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    insights: Mapped[list] = mapped_column(JsonType)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Challenge(Base):
    """One generated challenge per owner per UTC day."""

    __tablename__ = "challenges"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String)
    difficulty: Mapped[str] = mapped_column(String)
    points: Mapped[int] = mapped_column(Integer)
    time_estimate: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxEvent(Base):
    """`notifications.requested` events waiting to be published."""

    __tablename__ = "aggregator_outbox_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JsonType)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class InboxEvent(Base):
    """One row per applied `entries.created` event; a second delivery finds it and skips."""

    __tablename__ = "aggregator_inbox_events"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    consumed_by_service: Mapped[str] = mapped_column(String, primary_key=True)
    consumed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
