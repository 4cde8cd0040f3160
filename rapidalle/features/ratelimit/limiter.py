"""
Fixed-window per-user rate limiter.

- One window per user, stored in the flat cache as
  {windowStart, count, lastRequest} with a TTL equal to the window.
- A window that has run its full length is hard-reset on the next
  request, so bursts at window boundaries are possible.
- The read-then-write is not atomic: two concurrent requests for the same
  user can both read count=N and both be admitted. Use an atomic
  increment-and-compare store if that ever matters.
- Cache failures fail open (admit and log).
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict

from rapidalle.core.cache import FlatCache, rate_limit_key
from rapidalle.core.metrics import ratelimit_block_total

logger = logging.getLogger("rapidalle")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    count: int

    @property
    def reset_time(self) -> str:
        """ISO 8601 UTC timestamp for the end of the window."""
        return datetime.fromtimestamp(self.reset_at, timezone.utc).isoformat().replace("+00:00", "Z")

    def retry_after(self, now: float) -> int:
        return max(1, int(round(self.reset_at - now)))

    def headers(self, now: float = None) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after(time.time() if now is None else now))
        return headers


class FixedWindowRateLimiter:
    def __init__(
        self,
        cache: FlatCache,
        max_requests: int = 10,
        window_seconds: float = 3600,
        time_fn: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.max_requests = max(1, int(max_requests))
        self.window_seconds = window_seconds
        self.time_fn = time_fn

    def _fresh(self, now: float) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - 1,
            reset_at=now + self.window_seconds,
            count=1,
        )

    def _write(self, user_id: str, record: dict) -> None:
        self.cache.set(rate_limit_key(user_id), record, ttl_seconds=self.window_seconds)
        self.cache.save()

    def check(self, user_id: str) -> RateLimitDecision:
        """Count one request for ``user_id`` and decide whether to admit it."""
        now = self.time_fn()
        key = rate_limit_key(user_id)

        try:
            record = self.cache.get(key)
        except Exception as e:
            logger.warning(f"ratelimit.read_failed: {e}", extra={"user_id": user_id, "event_type": "ratelimit.fail_open"})
            return self._fresh(now)

        if not record or now - float(record.get("windowStart", 0)) >= self.window_seconds:
            decision = self._fresh(now)
            record = {"windowStart": now, "count": 1, "lastRequest": now}
        else:
            window_start = float(record["windowStart"])
            count = int(record.get("count", 0))
            reset_at = window_start + self.window_seconds
            if count >= self.max_requests:
                ratelimit_block_total.inc(labels={"scope": "generate"})
                return RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    count=count,
                )
            count += 1
            record = {"windowStart": window_start, "count": count, "lastRequest": now}
            decision = RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=max(0, self.max_requests - count),
                reset_at=reset_at,
                count=count,
            )

        try:
            self._write(user_id, record)
        except Exception as e:
            logger.warning(f"ratelimit.write_failed: {e}", extra={"user_id": user_id, "event_type": "ratelimit.fail_open"})
        return decision

    def peek(self, user_id: str) -> RateLimitDecision:
        """Current window state without counting a request."""
        now = self.time_fn()
        try:
            record = self.cache.get(rate_limit_key(user_id))
        except Exception:
            record = None

        if not record or now - float(record.get("windowStart", 0)) >= self.window_seconds:
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests,
                reset_at=now + self.window_seconds,
                count=0,
            )

        count = int(record.get("count", 0))
        return RateLimitDecision(
            allowed=count < self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=float(record["windowStart"]) + self.window_seconds,
            count=count,
        )
