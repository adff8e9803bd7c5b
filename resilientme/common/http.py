"""Service-to-service HTTP calls with the error taxonomy applied to responses."""

from typing import Any

import httpx

from resilientme.common.config import settings
from resilientme.common.errors import Internal, error_for_status
from resilientme.common.logging import current_context, logger


async def call_service(
    method: str,
    url: str,
    *,
    json: Any = None,
    params: dict[str, Any] | None = None,
    timeout: float | None = None,
) -> Any:
    """Call an internal service and return its JSON body.

    Downstream 4xx come back as the matching taxonomy error so the gateway can
    relay them unchanged; transport failures and 5xx become `Internal`.
    """

    trace_id = current_context()["trace_id"]
    headers = {"x-trace-id": trace_id} if trace_id else {}
    try:
        async with httpx.AsyncClient(timeout=timeout or settings.internal_timeout_seconds) as client:
            resp = await client.request(method, url, json=json, params=params, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("internal_call_failed method=%s url=%s error=%s", method, url, exc)
        raise Internal(f"{method} {url} failed") from exc
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise error_for_status(resp.status_code, str(detail))
    if not resp.content:
        return None
    return resp.json()
