"""Startup-time helpers: safe config logging and the per-service app shell."""

import os
from time import perf_counter

from fastapi import FastAPI, Request

from resilientme.common.config import settings
from resilientme.common.errors import register_error_handlers
from resilientme.common.logging import configure_logging, logger
from resilientme.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from resilientme.common.tracing import instrument_app, setup_tracing


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN", "DSN"]):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def bootstrap(config_keys: list[str]) -> None:
    """Logging, tracing and config dump; called once at import of a service `main`."""

    configure_logging()
    setup_tracing(settings.service_name)
    log_startup_config(settings.service_name, ["SERVICE_NAME", *config_keys])


def create_service_app(title: str, lifespan=None) -> FastAPI:
    """FastAPI app with error mapping, request metrics, `/health` and `/metrics`."""

    app = FastAPI(title=title, lifespan=lifespan)
    instrument_app(app)
    register_error_handlers(app)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    return app
