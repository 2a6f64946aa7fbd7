from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.rate_limiter import check_rate_limit, client_ip, rate_limit_dependency


def _request(forwarded_for: str | None = None) -> Request:
    headers = [(b"x-forwarded-for", forwarded_for.encode())] if forwarded_for else []
    return Request({"type": "http", "headers": headers, "client": ("10.1.2.3", 5123)})


def test_check_rate_limit_counts_in_window() -> None:
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [3, True]

    allowed, count, ttl = check_rate_limit("public_booking:1.2.3.4", 5, 60, client)

    assert (allowed, count) == (True, 3)
    assert 0 < ttl <= 60
    window_key = pipe.incr.call_args.args[0]
    assert window_key.startswith("public_booking:1.2.3.4:")
    pipe.expire.assert_called_once_with(window_key, 60)


def test_check_rate_limit_over_limit() -> None:
    client = MagicMock()
    client.pipeline.return_value.execute.return_value = [6, True]

    allowed, count, _ = check_rate_limit("k", 5, 60, client)

    assert allowed is False
    assert count == 6


def test_client_ip_prefers_forwarded_header() -> None:
    assert client_ip(_request("203.0.113.9, 10.0.0.1")) == "203.0.113.9"
    assert client_ip(_request()) == "10.1.2.3"


def test_dependency_rejects_over_limit_with_retry_after() -> None:
    with (
        patch("app.rate_limiter.get_redis_client"),
        patch("app.rate_limiter.check_rate_limit", return_value=(False, 6, 42)),
    ):
        with pytest.raises(HTTPException) as exc:
            asyncio.run(rate_limit_dependency(_request(), 5, 60, "public_booking"))

    assert exc.value.status_code == 429
    assert exc.value.headers == {"Retry-After": "42"}
    assert exc.value.detail["retry_after"] == 42


def test_dependency_allows_under_limit() -> None:
    with (
        patch("app.rate_limiter.get_redis_client"),
        patch("app.rate_limiter.check_rate_limit", return_value=(True, 1, 60)) as check,
    ):
        asyncio.run(rate_limit_dependency(_request("203.0.113.9"), 5, 60, "public_booking"))

    assert check.call_args.args[0] == "public_booking:203.0.113.9"


def test_dependency_fails_closed_when_redis_is_down() -> None:
    with patch("app.rate_limiter.get_redis_client", side_effect=ConnectionError("refused")):
        with pytest.raises(HTTPException) as exc:
            asyncio.run(rate_limit_dependency(_request(), 5, 60))

    assert exc.value.status_code == 503


def test_redis_health_reports_connected(client) -> None:
    with patch("app.rate_limiter.get_redis_client"):
        response = client.get("/health/redis")

    assert response.json() == {"status": "healthy", "redis": {"connected": True}}


def test_redis_health_reports_failure(client) -> None:
    with patch("app.rate_limiter.get_redis_client", side_effect=ConnectionError("refused")):
        body = client.get("/health/redis").json()

    assert body["status"] == "unhealthy"
    assert body["redis"] == {"connected": False, "error": "refused"}
