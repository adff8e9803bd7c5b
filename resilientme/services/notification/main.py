"""Notification service lifecycle and lightweight read endpoints."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from resilientme.common.db import SessionLocal, as_utc
from resilientme.common.startup import bootstrap, create_service_app
from resilientme.services.notification.service import NotificationService

bootstrap(["POSTGRES_DSN", "KAFKA_BOOTSTRAP_SERVERS", "PUSH_GATEWAY_URL"])
service = NotificationService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the task consumer and the dispatch tick with the app."""

    tasks = [
        asyncio.create_task(service.start_consumers()),
        asyncio.create_task(service.run_dispatcher()),
    ]
    yield
    for task in tasks:
        task.cancel()


app = create_service_app("ResilientMe Notification", lifespan=lifespan)


@app.get("/internal/owners/{owner_id}/tasks")
def get_tasks(owner_id: str):
    return [
        {
            "id": t.id,
            "kind": t.kind,
            "status": t.status,
            "run_at": as_utc(t.run_at).isoformat(),
            "error_message": t.error_message,
        }
        for t in service.list_tasks(owner_id)
    ]


@app.delete("/internal/owners/{owner_id}")
def delete_owner(owner_id: str):
    return {"deleted": service.delete_owner_data(owner_id)}
