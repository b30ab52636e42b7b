import asyncio
import time

import pytest
from starlette.requests import Request

from app.core.exceptions import RateLimitError
from app.core.rate_limiter import AUTH, GLOBAL, RateLimiter, RequestGate, client_fingerprint, client_ip


def _request(headers=None, client=("203.0.113.7", 52000), path="/api/auth/login") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": b"",
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_allows_up_to_ceiling_then_denies():
    limiter = RateLimiter("auth", window_seconds=60, max_requests=3)

    decisions = [limiter.hit("client") for _ in range(3)]
    assert all(decision.allowed for decision in decisions)
    assert [decision.remaining for decision in decisions] == [2, 1, 0]

    denied = limiter.hit("client")
    assert denied.allowed is False
    assert 1 <= denied.retry_after <= 60
    assert denied.remaining == 0


def test_denied_requests_do_not_count_or_extend_the_window():
    limiter = RateLimiter("auth", window_seconds=60, max_requests=2)
    limiter.hit("client")
    limiter.hit("client")
    reset_at = limiter.peek("client").reset_at

    for _ in range(5):
        assert limiter.hit("client").allowed is False

    assert limiter.peek("client").count == 2
    assert limiter.peek("client").reset_at == reset_at


def test_counter_restarts_at_one_after_window_closes():
    limiter = RateLimiter("auth", window_seconds=1, max_requests=3)
    for _ in range(3):
        assert limiter.hit("client").allowed is True
    assert limiter.hit("client").retry_after >= 1

    time.sleep(1.1)
    fresh = limiter.hit("client")

    assert fresh.allowed is True
    assert fresh.remaining == 2
    assert limiter.peek("client").count == 1


def test_clients_are_counted_independently():
    limiter = RateLimiter("auth", window_seconds=60, max_requests=1)

    assert limiter.hit("a").allowed is True
    assert limiter.hit("a").allowed is False
    assert limiter.hit("b").allowed is True


def test_cleanup_forgets_closed_windows():
    limiter = RateLimiter("auth", window_seconds=1, max_requests=5)
    limiter.hit("old")
    time.sleep(1.1)
    limiter.hit("new")

    assert limiter.cleanup() == 1
    assert limiter.peek("old") is None
    assert limiter.peek("new").count == 1
    assert len(limiter) == 1


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter("bad", window_seconds=0, max_requests=1)
    with pytest.raises(ValueError):
        RateLimiter("bad", window_seconds=1, max_requests=0)


def test_fingerprint_prefers_first_forwarded_address():
    request = _request(
        {
            "X-Forwarded-For": "198.51.100.1, 10.0.0.1",
            "X-Real-IP": "192.0.2.9",
            "User-Agent": "Mozilla/5.0",
        }
    )

    assert client_fingerprint(request) == "198.51.100.1:Mozilla/5.0"


def test_fingerprint_falls_back_to_real_ip_then_peer():
    assert client_fingerprint(_request({"X-Real-IP": "192.0.2.9", "User-Agent": "ua"})) == "192.0.2.9:ua"
    assert client_fingerprint(_request({"User-Agent": "ua"})) == "203.0.113.7:ua"
    assert client_fingerprint(_request({}, client=None)) == "unknown:unknown"


def test_client_ip_keeps_ipv6_addresses_whole():
    assert client_ip(_request({}, client=("::1", 52000))) == "::1"
    assert client_ip(_request({"X-Forwarded-For": "2001:db8::1, 10.0.0.1"})) == "2001:db8::1"


def test_fingerprint_truncates_user_agent():
    request = _request({"User-Agent": "x" * 200})

    assert client_fingerprint(request, user_agent_length=50) == "203.0.113.7:" + "x" * 50


def test_same_ip_with_different_agents_gets_separate_buckets():
    gate = RequestGate({AUTH: RateLimiter(AUTH, 60, 1)})

    gate.check(AUTH, _request({"User-Agent": "curl"}))
    gate.check(AUTH, _request({"User-Agent": "firefox"}))
    with pytest.raises(RateLimitError):
        gate.check(AUTH, _request({"User-Agent": "curl"}))


def test_gate_raises_with_retry_headers():
    gate = RequestGate({AUTH: RateLimiter(AUTH, 900, 2)})
    request = _request({"User-Agent": "pytest"})

    gate.check(AUTH, request)
    gate.check(AUTH, request)

    with pytest.raises(RateLimitError) as exc_info:
        gate.check(AUTH, request)

    exc = exc_info.value
    assert exc.status_code == 429
    assert 1 <= exc.retry_after <= 900
    assert exc.headers["Retry-After"] == str(exc.retry_after)
    assert exc.headers["X-RateLimit-Limit"] == "2"
    assert exc.errors == [{"retry_after": exc.retry_after}]


def test_gate_from_settings_builds_named_limiters():
    gate = RequestGate.from_settings()

    assert set(gate.limiters) == {"global", "auth", "strict"}
    assert gate.limiter(GLOBAL).max_requests == 1000
    assert gate.limiter(AUTH).window_seconds == 900
    with pytest.raises(KeyError):
        gate.limiter("missing")


def test_gate_limiters_keep_separate_counters():
    gate = RequestGate({GLOBAL: RateLimiter(GLOBAL, 60, 5), AUTH: RateLimiter(AUTH, 60, 1)})
    request = _request({"User-Agent": "pytest"})

    gate.check(AUTH, request)
    with pytest.raises(RateLimitError):
        gate.check(AUTH, request)

    assert gate.check(GLOBAL, request).remaining == 4


def test_gate_cleanup_and_reset_cover_every_limiter():
    gate = RequestGate(
        {
            GLOBAL: RateLimiter(GLOBAL, 1, 10),
            AUTH: RateLimiter(AUTH, 900, 10),
        }
    )
    request = _request({"User-Agent": "pytest"})
    gate.check(GLOBAL, request)
    gate.check(AUTH, request)

    time.sleep(1.1)
    assert gate.cleanup() == 1

    gate.reset()
    assert all(len(limiter) == 0 for limiter in gate.limiters.values())
    assert gate.limiter(AUTH).peek(client_fingerprint(request)) is None


def test_gate_cleanup_loop_starts_and_stops():
    gate = RequestGate({AUTH: RateLimiter(AUTH, 60, 1)}, cleanup_interval=0.01)

    async def run():
        gate.start()
        assert gate.running
        await asyncio.sleep(0.03)
        await gate.stop()
        assert not gate.running

    asyncio.run(run())
