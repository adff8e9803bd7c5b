"""Notification scheduler: task creation from events and the periodic dispatch tick."""

import asyncio
from datetime import datetime, timedelta

import httpx
from sqlalchemy import delete, or_, select, update

from resilientme.common.config import settings
from resilientme.common.db import as_utc, utcnow
from resilientme.common.events import NOTIFICATIONS_REQUESTED, EventEnvelope, consume_forever
from resilientme.common.logging import logger
from resilientme.common.metrics import (
    duplicate_events_skipped_total,
    notification_tick_seconds,
    notifications_processed_total,
)
from resilientme.common.state_machine import ERROR, NO_TOKENS, PENDING, SENT, validate_transition
from resilientme.common.tracing import get_tracer
from resilientme.services.notification.models import DeliveryTarget, InboxEvent, NotificationTask

tracer = get_tracer("notification")


class PushGateway:
    """Multicast sender in front of the platform push provider."""

    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        self.url = url or settings.push_gateway_url
        self.timeout = timeout or settings.internal_timeout_seconds

    async def send(self, tokens: list[str], title: str, body: str, data: dict) -> dict:
        """Raise on any transport or provider error."""

        message = {"tokens": tokens, "notification": {"title": title, "body": body}, "data": data}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json=message)
            resp.raise_for_status()
        return resp.json() if resp.content else {}


class NotificationService:
    """Owns notification tasks from creation to their single terminal write."""

    def __init__(self, session_factory, push: PushGateway | None = None, service_name: str = "notification") -> None:
        self.session_factory = session_factory
        self.push = push or PushGateway()
        self.service_name = service_name

    def _inbox_seen(self, db, event_id: str) -> bool:
        return db.get(InboxEvent, (event_id, self.service_name)) is not None

    def _mark_inbox(self, db, event_id: str) -> None:
        db.add(InboxEvent(event_id=event_id, consumed_by_service=self.service_name))

    async def handle_notification_requested(self, event: EventEnvelope) -> None:
        """Create the pending task named by the producer, once."""

        payload = event.payload
        task_id = payload["task_id"]
        with self.session_factory() as db:
            if self._inbox_seen(db, event.event_id) or db.get(NotificationTask, task_id) is not None:
                logger.info("duplicate event skipped topic=%s event_id=%s", NOTIFICATIONS_REQUESTED, event.event_id)
                duplicate_events_skipped_total.labels(service=self.service_name, topic=NOTIFICATIONS_REQUESTED).inc()
                return
            db.add(
                NotificationTask(
                    id=task_id,
                    owner_id=event.owner_id,
                    kind=payload["kind"],
                    run_at=as_utc(datetime.fromisoformat(payload["run_at"])),
                    status=PENDING,
                    payload={"title": payload["title"], "body": payload["body"], "data": payload.get("data", {})},
                )
            )
            self._mark_inbox(db, event.event_id)
            db.commit()
        logger.info("notification_task_created task_id=%s run_at=%s", task_id, payload["run_at"])

    def claim_due(self, now: datetime, limit: int | None = None) -> list[dict]:
        """Lease up to `limit` due pending tasks and return plain snapshots of them."""

        lease_until = now + timedelta(seconds=settings.notification_lease_seconds)
        with self.session_factory() as db:
            tasks = (
                db.execute(
                    select(NotificationTask)
                    .where(
                        NotificationTask.status == PENDING,
                        NotificationTask.run_at <= now,
                        or_(NotificationTask.claimed_until.is_(None), NotificationTask.claimed_until < now),
                    )
                    .order_by(NotificationTask.run_at)
                    .limit(limit or settings.notification_batch_size)
                    .with_for_update(skip_locked=True)
                )
                .scalars()
                .all()
            )
            claimed = []
            for task in tasks:
                task.claimed_until = lease_until
                claimed.append({"id": task.id, "owner_id": task.owner_id, "payload": dict(task.payload)})
            db.commit()
        return claimed

    def _tokens_for(self, owner_id: str) -> list[str]:
        with self.session_factory() as db:
            return list(
                db.execute(select(DeliveryTarget.token).where(DeliveryTarget.owner_id == owner_id)).scalars().all()
            )

    def finish(self, task_id: str, status: str, now: datetime, error_message: str | None = None) -> bool:
        """Terminal write, applied only while the task is still pending."""

        validate_transition(PENDING, status)
        with self.session_factory() as db:
            result = db.execute(
                update(NotificationTask)
                .where(NotificationTask.id == task_id, NotificationTask.status == PENDING)
                .values(status=status, error_message=error_message, processed_at=now, claimed_until=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount != 1:
            logger.warning("notification_already_terminal task_id=%s status=%s", task_id, status)
            return False
        notifications_processed_total.labels(service=self.service_name, status=status).inc()
        return True

    async def process(self, task: dict, now: datetime) -> str:
        """Deliver one claimed task; returns the terminal status written."""

        tokens = self._tokens_for(task["owner_id"])
        if not tokens:
            self.finish(task["id"], NO_TOKENS, now)
            return NO_TOKENS
        payload = task["payload"]
        try:
            await self.push.send(tokens, payload["title"], payload["body"], payload.get("data", {}))
        except Exception as exc:
            logger.error("push_send_failed task_id=%s error=%s", task["id"], exc)
            self.finish(task["id"], ERROR, now, error_message=str(exc) or exc.__class__.__name__)
            return ERROR
        self.finish(task["id"], SENT, now)
        return SENT

    async def dispatch_due(self, now: datetime | None = None) -> dict[str, int]:
        """One tick: claim a batch and settle every task in it concurrently."""

        now = now or utcnow()
        with tracer.start_as_current_span("notification.dispatch_due"), notification_tick_seconds.labels(
            service=self.service_name
        ).time():
            tasks = self.claim_due(now)
            outcomes = await asyncio.gather(*(self.process(task, now) for task in tasks), return_exceptions=True)
        summary: dict[str, int] = {}
        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, Exception):
                # Lease expires and the next tick retries the still-pending task.
                logger.error("notification_process_failed task_id=%s error=%s", task["id"], outcome)
                outcome = "failed"
            summary[outcome] = summary.get(outcome, 0) + 1
        logger.info("dispatch_tick claimed=%s outcomes=%s", len(tasks), summary)
        return summary

    async def run_dispatcher(self) -> None:
        while True:
            try:
                await self.dispatch_due()
            except Exception as exc:
                logger.exception("dispatch_tick_failed error=%s", exc)
            await asyncio.sleep(settings.notification_tick_seconds)

    def list_tasks(self, owner_id: str) -> list[NotificationTask]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(NotificationTask)
                    .where(NotificationTask.owner_id == owner_id)
                    .order_by(NotificationTask.run_at)
                )
                .scalars()
                .all()
            )

    def delete_owner_data(self, owner_id: str) -> dict[str, int]:
        with self.session_factory() as db:
            tasks = db.execute(delete(NotificationTask).where(NotificationTask.owner_id == owner_id)).rowcount
            targets = db.execute(delete(DeliveryTarget).where(DeliveryTarget.owner_id == owner_id)).rowcount
            db.commit()
        logger.info("notification_data_deleted tasks=%s targets=%s", tasks, targets)
        return {"tasks": tasks, "targets": targets}

    async def start_consumers(self) -> None:
        await consume_forever(NOTIFICATIONS_REQUESTED, "notification-tasks", self.handle_notification_requested)
