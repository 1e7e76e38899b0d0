"""
api/limiter.py -- Fixed-window rate limiter backed by the `limits` library.

One shared RateLimiter instance lives on app.state.limiter (created in
configure_state, so each app and each test gets its own counter storage).
Hits are counted under the identifiers (purpose, client) so the login budget
and the general API budget of one client never interfere.

Window semantics come from limits' FixedWindowRateLimiter: the first hit
opens a window of `window_seconds`; every hit inside it increments the count;
hit number max_requests + 1 and later are denied until the window ends, then
the next hit opens a new window.

Storage is chosen by RATE_LIMIT_STORAGE_URI ("memory://" by default, the same
URI scheme slowapi takes). MemoryStorage expires finished windows on its own
timer, so no sweep task is needed. Memory state is per-process and lost on
restart; point the URI at redis:// to share budgets between workers.

Known coarseness: clients without X-Forwarded-For / X-Real-Ip all share the
"unknown" bucket. Behind a proxy that sets those headers this does not occur.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from limits import RateLimitItem, RateLimitItemPerSecond
from limits import parse as parse_limit
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from auth.dependencies import get_client_ip
from core.clock import utcnow
from core.config import Settings

logger = logging.getLogger("backoffice.limiter")

UNKNOWN_CLIENT = "unknown"
DEFAULT_STORAGE_URI = "memory://"


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_seconds: int

    @classmethod
    def parse(cls, notation: str) -> RateLimitPolicy:
        """Build a policy from limits notation, e.g. "100 per minute"."""
        item = parse_limit(notation)
        return cls(max_requests=item.amount, window_seconds=item.get_expiry())

    @property
    def item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(self.max_requests, self.window_seconds)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class RateLimitPolicies:
    """The three configured presets."""

    login: RateLimitPolicy
    api: RateLimitPolicy
    upload: RateLimitPolicy

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimitPolicies:
        return cls(
            login=RateLimitPolicy.parse(settings.login_rate_limit),
            api=RateLimitPolicy.parse(settings.api_rate_limit),
            upload=RateLimitPolicy.parse(settings.upload_rate_limit),
        )


class RateLimiter:
    """Counts hits per (purpose, identifier) in its own limits storage."""

    def __init__(self, storage_uri: str = DEFAULT_STORAGE_URI) -> None:
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)

    def check(self, purpose: str, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Count one hit against (purpose, identifier) and report whether it is allowed."""
        item = policy.item
        allowed = self._strategy.hit(item, purpose, identifier)
        stats = self._strategy.get_window_stats(item, purpose, identifier)
        return RateLimitResult(
            allowed=allowed,
            remaining=stats.remaining,
            reset_at=datetime.fromtimestamp(stats.reset_time, tz=timezone.utc),
        )

    def now(self) -> datetime:
        return utcnow()

    def reset(self) -> None:
        self._storage.reset()


def client_identifier(request: Request) -> str:
    return get_client_ip(request) or UNKNOWN_CLIENT


def retry_after_seconds(result: RateLimitResult, now: datetime) -> int:
    return max(1, math.ceil((result.reset_at - now).total_seconds()))


def rate_limit_detail(result: RateLimitResult, now: datetime) -> dict:
    return {
        "code": "rate_limited",
        "message": "Too many requests. Please try again later.",
        "retry_after": retry_after_seconds(result, now),
    }


def rate_limit_response(result: RateLimitResult, now: datetime) -> JSONResponse:
    """429 with Retry-After (whole seconds, at least 1) and the error envelope."""
    detail = rate_limit_detail(result, now)
    return JSONResponse(
        status_code=429,
        content={"error": detail},
        headers={"Retry-After": str(detail["retry_after"])},
    )


def enforce(request: Request, purpose: str, policy: RateLimitPolicy) -> None:
    """Count a hit and raise HTTP 429 when over budget."""
    limiter: RateLimiter = request.app.state.limiter
    client = client_identifier(request)
    result = limiter.check(purpose, client, policy)
    if not result.allowed:
        detail = rate_limit_detail(result, limiter.now())
        logger.warning("Rate limit hit: purpose=%s client=%s", purpose, client)
        raise HTTPException(status_code=429, detail=detail, headers={"Retry-After": str(detail["retry_after"])})


def login_rate_limit(request: Request) -> None:
    """Route dependency for POST /api/auth/login; counts the attempt before the body is validated."""
    enforce(request, "login", request.app.state.rate_limits.login)


def api_rate_limit(request: Request) -> None:
    """Router-level dependency applying the general API budget."""
    enforce(request, "api", request.app.state.rate_limits.api)


def upload_rate_limit(request: Request) -> None:
    """Dependency for media upload routes."""
    enforce(request, "upload", request.app.state.rate_limits.upload)
