"""Redis-backed fixed window rate limiter for sensitive user actions.

Each (user, endpoint) pair owns one Redis hash::

    ratelimit:{user_id}:{endpoint}
        count         requests admitted in the current window
        window_start  window start, epoch milliseconds
        expires_at    window end, epoch milliseconds

The window is reset lazily: the first request after ``expires_at`` starts a
new window with ``count=1``.  The key also carries a Redis TTL one second longer
than the window, so Redis never drops it before ``expires_at`` has passed
and idle keys still disappear on their own.

Counters are not transactional; two racing requests may both be admitted
at the boundary.  The limiter fails open: if Redis is unreachable the
request is allowed and a warning is logged.

Typical usage::

    limiter = RateLimiter(redis_client)
    result = await limiter.check_rate_limit(user_id, "resend-verification")
    if not result.allowed:
        raise HTTPException(429, headers={"Retry-After": str(result.retry_after)})
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis

from capstone_portal.api.metrics import rate_limit_decisions_total
from capstone_portal.core.clock import Clock, utc_now

logger = logging.getLogger(__name__)

# Keeps the key alive through the request that lands exactly on expires_at.
_TTL_GRACE_MS = 1_000


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed window limit.

    Attributes:
        max_requests: Requests admitted per window.  Must be at least 1.
        window_ms: Window length in milliseconds.
    """

    max_requests: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be positive")


RESEND_VERIFICATION_ENDPOINT = "resend-verification"

RESEND_VERIFICATION_LIMIT = RateLimitConfig(max_requests=3, window_ms=60 * 60 * 1000)
"""Three verification emails per hour."""


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: ``max_requests`` of the applied config.
        remaining: Requests still admitted in this window.
        count: Requests counted in this window.
        reset_at: End of the current window, ``None`` when no window is open.
        retry_after: Whole seconds until the window ends; set only when refused.
    """

    allowed: bool
    limit: int
    remaining: int
    count: int
    reset_at: Optional[datetime] = None
    retry_after: Optional[int] = None

    def headers(self) -> dict[str, str]:
        """HTTP headers advertising the limit to the client."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Used": str(self.count),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _decode_state(raw: dict) -> dict[str, int]:
    """Normalise an HGETALL reply (str or bytes keys) into ``{field: int}``."""
    state: dict[str, int] = {}
    for key, value in raw.items():
        name = key.decode() if isinstance(key, bytes) else key
        state[name] = int(value)
    return state


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------


@dataclass
class RateLimiter:
    """Fixed window counter keyed by (user, endpoint).

    Attributes:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        clock: Source of the current time.
    """

    redis_client: aioredis.Redis
    clock: Clock = field(default=utc_now)

    def _key(self, user_id: str, endpoint: str) -> str:
        return f"ratelimit:{user_id}:{endpoint}"

    def _fail_open(self, config: RateLimitConfig, user_id: str, endpoint: str) -> RateLimitResult:
        rate_limit_decisions_total.labels(endpoint=endpoint, outcome="fail_open").inc()
        logger.warning(
            "Rate limit store unavailable, allowing request",
            extra={"user_id": user_id, "endpoint": endpoint},
        )
        return RateLimitResult(
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests - 1,
            count=1,
        )

    async def _open_window(
        self,
        key: str,
        now_ms: int,
        config: RateLimitConfig,
    ) -> RateLimitResult:
        expires_at = now_ms + config.window_ms
        await self.redis_client.hset(
            key,
            mapping={"count": 1, "window_start": now_ms, "expires_at": expires_at},
        )
        await self.redis_client.pexpire(key, config.window_ms + _TTL_GRACE_MS)
        return RateLimitResult(
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests - 1,
            count=1,
            reset_at=_from_ms(expires_at),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_rate_limit(
        self,
        user_id: str,
        endpoint: str,
        config: RateLimitConfig = RESEND_VERIFICATION_LIMIT,
    ) -> RateLimitResult:
        """Count one request against the window and report whether it is allowed.

        Args:
            user_id: Caller identifier.
            endpoint: Logical endpoint name.
            config: Window size and request budget.

        Returns:
            A :class:`RateLimitResult`.  Refused requests are not counted.
        """
        user_id = str(user_id)
        key = self._key(user_id, endpoint)
        now_ms = _to_ms(self.clock())
        try:
            state = _decode_state(await self.redis_client.hgetall(key))
            if not state or now_ms > state.get("expires_at", 0):
                result = await self._open_window(key, now_ms, config)
            else:
                expires_at = state["expires_at"]
                count = state.get("count", 0)
                if count >= config.max_requests:
                    result = RateLimitResult(
                        allowed=False,
                        limit=config.max_requests,
                        remaining=0,
                        count=count,
                        reset_at=_from_ms(expires_at),
                        retry_after=max(math.ceil((expires_at - now_ms) / 1000), 0),
                    )
                else:
                    count = int(await self.redis_client.hincrby(key, "count", 1))
                    result = RateLimitResult(
                        allowed=True,
                        limit=config.max_requests,
                        remaining=max(config.max_requests - count, 0),
                        count=count,
                        reset_at=_from_ms(expires_at),
                    )
        except Exception:
            return self._fail_open(config, user_id, endpoint)

        outcome = "allowed" if result.allowed else "limited"
        rate_limit_decisions_total.labels(endpoint=endpoint, outcome=outcome).inc()
        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                extra={
                    "user_id": user_id,
                    "endpoint": endpoint,
                    "count": result.count,
                    "retry_after": result.retry_after,
                },
            )
        return result

    async def get_rate_limit_status(
        self,
        user_id: str,
        endpoint: str,
        config: RateLimitConfig = RESEND_VERIFICATION_LIMIT,
    ) -> RateLimitResult:
        """Report the current window without counting a request."""
        user_id = str(user_id)
        key = self._key(user_id, endpoint)
        now_ms = _to_ms(self.clock())
        try:
            state = _decode_state(await self.redis_client.hgetall(key))
        except Exception:
            logger.warning(
                "Rate limit store unavailable, reporting an open window",
                extra={"user_id": user_id, "endpoint": endpoint},
            )
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=config.max_requests,
                count=0,
            )

        if not state or now_ms > state.get("expires_at", 0):
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=config.max_requests,
                count=0,
            )
        count = state.get("count", 0)
        expires_at = state["expires_at"]
        allowed = count < config.max_requests
        return RateLimitResult(
            allowed=allowed,
            limit=config.max_requests,
            remaining=max(config.max_requests - count, 0),
            count=count,
            reset_at=_from_ms(expires_at),
            retry_after=None if allowed else max(math.ceil((expires_at - now_ms) / 1000), 0),
        )

    async def reset(self, user_id: str, endpoint: str) -> None:
        """Forget the window for (user, endpoint)."""
        await self.redis_client.delete(self._key(str(user_id), endpoint))
