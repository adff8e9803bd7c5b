"""Fixed-window rate limiting per (owner, action) on Redis.

Each bucket is a hash `{count, window_start}` under `ratelimit:{owner}:{action}`.
The read and the increment run inside `WATCH`/`MULTI`, so two near-simultaneous
requests that both read `count = limit - 1` cannot both succeed: the second
`EXEC` aborts with `WatchError` and is replayed against the new count.
"""

from time import time
from typing import NamedTuple

import redis

from resilientme.common.config import settings
from resilientme.common.errors import Internal, ResourceExhausted
from resilientme.common.logging import logger
from resilientme.common.metrics import rate_limit_rejections_total, transaction_conflicts_total

KEY_PREFIX = "ratelimit"


class RateLimitPolicy(NamedTuple):
    limit: int
    window_seconds: int


def default_policies() -> dict[str, RateLimitPolicy]:
    """Per-action limits used by the gateway, resolved from settings."""

    return {
        "create-entry": RateLimitPolicy(settings.rate_limit_create_entry, settings.rate_limit_create_entry_window_seconds),
        "create-post": RateLimitPolicy(settings.rate_limit_create_post, settings.rate_limit_create_post_window_seconds),
        "react": RateLimitPolicy(settings.rate_limit_react, settings.rate_limit_react_window_seconds),
        "report": RateLimitPolicy(settings.rate_limit_report, settings.rate_limit_report_window_seconds),
        "export": RateLimitPolicy(settings.rate_limit_export, settings.rate_limit_export_window_seconds),
        "recovery-plan": RateLimitPolicy(
            settings.rate_limit_recovery_plan, settings.rate_limit_recovery_plan_window_seconds
        ),
    }


class RateLimiter:
    """Transactional fixed-window counter guarding mutation entry points."""

    def __init__(
        self,
        rdb: redis.Redis,
        policies: dict[str, RateLimitPolicy] | None = None,
        max_attempts: int | None = None,
        retention_seconds: int | None = None,
    ) -> None:
        self.rdb = rdb
        self.policies = policies if policies is not None else default_policies()
        self.max_attempts = max_attempts or settings.transaction_max_attempts
        self.retention_seconds = retention_seconds or settings.retention_days * 86400

    @staticmethod
    def bucket_key(owner_id: str, action_key: str) -> str:
        return f"{KEY_PREFIX}:{owner_id}:{action_key}"

    def check(
        self,
        owner_id: str,
        action_key: str,
        limit: int,
        window_seconds: int,
        now: float | None = None,
    ) -> int:
        """Count one call against the bucket; return the new count.

        Raises `ResourceExhausted` when the call would exceed `limit` inside
        the current window, `Internal` when the bucket stays contended.
        """

        key = self.bucket_key(owner_id, action_key)
        for attempt in range(1, self.max_attempts + 1):
            current = time() if now is None else now
            with self.rdb.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    count_raw, start_raw = pipe.hmget(key, "count", "window_start")
                    count = int(count_raw) if count_raw is not None else 0
                    window_start = float(start_raw) if start_raw is not None else current
                    if current - window_start > window_seconds:
                        count, window_start = 1, current
                    elif count + 1 > limit:
                        rate_limit_rejections_total.labels(service=settings.service_name, action=action_key).inc()
                        raise ResourceExhausted("Rate limit exceeded")
                    else:
                        count += 1
                    pipe.multi()
                    pipe.hset(key, mapping={"count": count, "window_start": window_start})
                    pipe.expire(key, self.retention_seconds)
                    pipe.execute()
                    return count
                except redis.WatchError:
                    transaction_conflicts_total.labels(service=settings.service_name, operation="rate_limit").inc()
                    logger.warning("rate_limit_conflict key=%s attempt=%s/%s", key, attempt, self.max_attempts)
        raise Internal(f"rate limit bucket {key} stayed contended")

    def enforce(self, owner_id: str, action_key: str, now: float | None = None) -> int:
        """`check` with the configured policy for `action_key`."""

        policy = self.policies[action_key]
        return self.check(owner_id, action_key, policy.limit, policy.window_seconds, now=now)

    def sweep(self, now: float | None = None) -> int:
        """Delete buckets whose window started longer ago than the retention period."""

        current = time() if now is None else now
        deleted = 0
        for key in self.rdb.scan_iter(match=f"{KEY_PREFIX}:*", count=500):
            start_raw = self.rdb.hget(key, "window_start")
            if start_raw is None or current - float(start_raw) > self.retention_seconds:
                deleted += self.rdb.delete(key)
        return deleted
