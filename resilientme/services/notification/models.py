"""Notification persistence models (scheduled tasks, push targets + inbox dedupe)."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from resilientme.common.db import Base, JsonType
from resilientme.common.state_machine import PENDING


class NotificationTask(Base):
    """One deferred push; leaves `pending` exactly once.

    `claimed_until` is a dispatch lease: a tick that claimed the row owns it
    until then, so an overlapping tick skips it.
    """

    __tablename__ = "notification_tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    kind: Mapped[str] = mapped_column(String)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String, default=PENDING, index=True)
    payload: Mapped[dict] = mapped_column(JsonType)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DeliveryTarget(Base):
    """Push token registered by a device; registration happens elsewhere."""

    __tablename__ = "delivery_targets"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    token: Mapped[str] = mapped_column(String, primary_key=True)
    platform: Mapped[str] = mapped_column(String, default="ios")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class InboxEvent(Base):
    __tablename__ = "notification_inbox_events"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    consumed_by_service: Mapped[str] = mapped_column(String, primary_key=True)
    consumed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
