"""In-memory, per-client request gate for the API.

Each named limiter is a ``limits`` fixed window per client fingerprint. The
window opens on the first request and is replaced wholesale once its
deadline passes, so a client can burst up to twice the ceiling across a
boundary.

Counters live in process memory (``limits`` ``MemoryStorage``). Several API
processes behind a load balancer each keep their own counters; pointing the
limiters at a shared ``limits`` storage would be needed to enforce a global
ceiling.
"""
import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Set

import structlog
from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from app.core.config import settings
from app.core.exceptions import RateLimitError

logger = structlog.get_logger()

GLOBAL = "global"
AUTH = "auth"
STRICT = "strict"


@dataclass
class WindowCounter:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


class RateLimiter:
    """``max_requests`` per ``window_seconds`` for each client key."""

    def __init__(
        self,
        name: str,
        window_seconds: int,
        max_requests: int,
        storage: Optional[MemoryStorage] = None,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.name = name
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.item = RateLimitItemPerSecond(max_requests, window_seconds, namespace=name)
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it may proceed.

        Rejected requests are not counted, so the window a client is locked
        out of still closes at its original deadline.
        """
        with self._lock:
            self._keys.add(key)
            allowed = self._strategy.test(self.item, key) and self._strategy.hit(self.item, key)
            reset_at, remaining = self._strategy.get_window_stats(self.item, key)

        if allowed:
            return RateLimitDecision(True, self.max_requests, remaining, reset_at)

        retry_after = max(1, math.ceil(reset_at - time.time()))
        return RateLimitDecision(False, self.max_requests, 0, reset_at, retry_after=retry_after)

    def peek(self, key: str) -> Optional[WindowCounter]:
        storage_key = self.item.key_for(key)
        count = self.storage.get(storage_key)
        if not count:
            return None
        return WindowCounter(count=count, reset_at=self.storage.get_expiry(storage_key))

    def cleanup(self) -> int:
        """Forget keys whose window has closed. Returns how many were dropped."""
        with self._lock:
            expired = [key for key in self._keys if not self.storage.get(self.item.key_for(key))]
            for key in expired:
                self._keys.discard(key)
                self._strategy.clear(self.item, key)
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self.storage.reset()
            self._keys.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` entry, else ``X-Real-IP``, else the peer address."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    real_ip = request.headers.get("X-Real-IP")

    ip = None
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip() or None
    if not ip and real_ip:
        ip = real_ip.strip() or None
    if not ip and request.client:
        ip = request.client.host
    return ip or "unknown"


def client_fingerprint(request: Request, user_agent_length: Optional[int] = None) -> str:
    """IP plus truncated user agent. Not a security boundary, only a bucket key."""
    if user_agent_length is None:
        user_agent_length = settings.RATE_LIMIT_USER_AGENT_LENGTH

    user_agent = request.headers.get("User-Agent") or "unknown"
    return f"{client_ip(request)}:{user_agent[:user_agent_length]}"


class RequestGate:
    """Owns the named limiters and their periodic cleanup."""

    def __init__(
        self,
        limiters: Dict[str, RateLimiter],
        cleanup_interval: float = 60,
        user_agent_length: int = 50,
    ):
        self.limiters = limiters
        self.cleanup_interval = cleanup_interval
        self.user_agent_length = user_agent_length
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, config=settings) -> "RequestGate":
        return cls(
            limiters={
                GLOBAL: RateLimiter(
                    GLOBAL,
                    config.RATE_LIMIT_WINDOW_SECONDS,
                    config.RATE_LIMIT_MAX_REQUESTS,
                ),
                AUTH: RateLimiter(
                    AUTH,
                    config.RATE_LIMIT_AUTH_WINDOW_SECONDS,
                    config.RATE_LIMIT_AUTH_MAX_REQUESTS,
                ),
                STRICT: RateLimiter(
                    STRICT,
                    config.RATE_LIMIT_STRICT_WINDOW_SECONDS,
                    config.RATE_LIMIT_STRICT_MAX_REQUESTS,
                ),
            },
            cleanup_interval=config.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
            user_agent_length=config.RATE_LIMIT_USER_AGENT_LENGTH,
        )

    def limiter(self, name: str) -> RateLimiter:
        try:
            return self.limiters[name]
        except KeyError:
            raise KeyError(f"Unknown rate limiter: {name}") from None

    def check(self, name: str, request: Request) -> RateLimitDecision:
        """Count ``request`` against limiter ``name``; raise when over the ceiling."""
        key = client_fingerprint(request, self.user_agent_length)
        decision = self.limiter(name).hit(key)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                limiter=name,
                client=key,
                path=request.url.path,
                retry_after=decision.retry_after,
            )
            raise RateLimitError(retry_after=decision.retry_after, limit=decision.limit)
        return decision

    def cleanup(self) -> int:
        removed = 0
        for limiter in self.limiters.values():
            removed += limiter.cleanup()
        if removed:
            logger.debug("rate_limit_cleanup", removed=removed)
        return removed

    def reset(self) -> None:
        for limiter in self.limiters.values():
            limiter.reset()

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start(self) -> None:
        """Start the cleanup loop on the running event loop."""
        if self.running:
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception:
                logger.exception("rate_limit_cleanup_failed")


def get_request_gate(request: Request) -> RequestGate:
    return request.app.state.request_gate


def auth_rate_limit(request: Request) -> None:
    """Dependency for login and registration."""
    get_request_gate(request).check(AUTH, request)


def strict_rate_limit(request: Request) -> None:
    """Dependency for password reset request and confirmation."""
    get_request_gate(request).check(STRICT, request)
