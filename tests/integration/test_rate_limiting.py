import time

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.auth.verify import auth_dependency
from app.middleware.rate_limit_dependencies import (
    rate_limit_search,
    rate_limit_user,
    rate_limit_user_only,
)
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.rate_limiter import RateLimiter
from app.middleware.request_context import RequestContextMiddleware


def _denied(retry_after: int = 7, limit: int = 5):
    async def _check(*args, **kwargs):
        return False, {"allowed": False, "limit": limit, "remaining": 0, "retry_after": retry_after}

    return _check


def _allowed(limit: int = 100, remaining: int = 99):
    async def _check(*args, **kwargs):
        return True, {"allowed": True, "limit": limit, "remaining": remaining, "retry_after": None}

    return _check


def _app(dependency, apply_auth_override) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    apply_auth_override(app)

    @app.get("/limited")
    async def limited(request: Request, _rate: None = Depends(dependency)):
        return {"ok": True}

    return app


@pytest.fixture
def limits_on(monkeypatch):
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", True)


def test_rate_limit_headers_middleware():
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)

    @app.get("/limited")
    async def limited(request: Request):
        request.state.rate_limit_info = {
            "allowed": True,
            "limit": 10,
            "remaining": 9,
            "retry_after": None,
        }
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/limited")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-RateLimit-Reset" not in response.headers
    assert "Retry-After" not in response.headers


def test_rate_limit_dependency_blocks(monkeypatch, limits_on, apply_auth_override):
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_user_rate_limit", _denied()
    )

    client = TestClient(_app(rate_limit_user_only, apply_auth_override))
    response = client.get("/limited")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "7"
    assert response.json()["detail"]["error"] == "rate_limit_exceeded"


def test_combined_limit_checks_ip_first(monkeypatch, limits_on, apply_auth_override):
    user_calls = []

    async def user_check(user_id, *args, **kwargs):
        user_calls.append(user_id)
        return True, {"allowed": True, "limit": 100, "remaining": 99, "retry_after": None}

    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_ip_rate_limit",
        _denied(retry_after=12, limit=300),
    )
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_user_rate_limit", user_check
    )

    client = TestClient(_app(rate_limit_user, apply_auth_override))
    response = client.get("/limited")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "12"
    assert user_calls == []


def test_allowed_request_carries_user_limit_headers(monkeypatch, limits_on, apply_auth_override):
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_ip_rate_limit",
        _allowed(limit=300, remaining=250),
    )
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_user_rate_limit",
        _allowed(limit=100, remaining=42),
    )

    client = TestClient(_app(rate_limit_user, apply_auth_override))
    response = client.get("/limited")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "100"
    assert response.headers["X-RateLimit-Remaining"] == "42"


def test_search_limit_blocks(monkeypatch, limits_on, apply_auth_override):
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_search_rate_limit",
        _denied(retry_after=30, limit=30),
    )

    client = TestClient(_app(rate_limit_search, apply_auth_override))
    response = client.get("/limited")

    assert response.status_code == 429
    assert "Too many searches" in response.json()["detail"]["message"]


def test_disabled_rate_limiting_skips_checks(monkeypatch, apply_auth_override):
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(
        "app.middleware.rate_limit_dependencies.rate_limiter.check_user_rate_limit", _denied()
    )

    client = TestClient(_app(rate_limit_user_only, apply_auth_override))

    assert client.get("/limited").status_code == 200


class EvalClient:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def eval(self, script, numkeys, *args):
        self.calls.append(args)
        return self.result


class StaticStore:
    def __init__(self, client=None, error=None):
        self.client = client
        self.error = error

    async def get_client(self):
        if self.error:
            raise self.error
        return self.client


@pytest.mark.asyncio
async def test_rate_limiter_allows_and_counts():
    client = EvalClient([1, 3, 0])
    limiter = RateLimiter(default_limit=10, window_seconds=60, store=StaticStore(client))

    allowed, info = await limiter.check_rate_limit("user:u1")

    assert allowed is True
    assert info["remaining"] == 7
    assert info["retry_after"] is None
    assert client.calls[0][0] == "ratelimit:user:u1"


@pytest.mark.asyncio
async def test_rate_limiter_denies_with_retry_after():
    oldest = int(time.time()) - 45
    limiter = RateLimiter(default_limit=5, window_seconds=60, store=StaticStore(EvalClient([0, 5, oldest])))

    allowed, info = await limiter.check_rate_limit("search:u1")

    assert allowed is False
    assert info["remaining"] == 0
    assert 1 <= info["retry_after"] <= 16


@pytest.mark.asyncio
async def test_rate_limiter_fail_open_and_closed():
    broken = StaticStore(error=ConnectionError("redis down"))

    allowed, info = await RateLimiter(default_limit=5, fail_open=True, store=broken).check_rate_limit("k")
    assert allowed is True
    assert info["error"] == "rate_limiter_error"

    allowed, info = await RateLimiter(
        default_limit=5, window_seconds=60, fail_open=False, store=broken
    ).check_rate_limit("k")
    assert allowed is False
    assert info["retry_after"] == 60
