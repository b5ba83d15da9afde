"""Tests for rate limiting on coupon validation.

Verifies that the sliding-window rate limiter allows requests under the
limit and rejects requests over it, and that the validate endpoint keys the
budget by user when a token is sent and by client address otherwise.
"""

import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from storefront.core.rate_limiter import RateLimiter
from storefront.main import app
from storefront.routers.coupons import validation_rate_limiter


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture(autouse=True)
def _restore_limit():
    """Tests below shrink the budget; put the configured one back afterwards."""
    original = validation_rate_limiter.max_requests
    yield
    validation_rate_limiter.max_requests = original


def _validate(client: TestClient, headers: dict | None = None):
    return client.post(
        "/v1/coupons/validate",
        json={
            "code": "GUESS",
            "cart_lines": [{"product_id": "p1", "quantity": 1, "unit_price": "10"}],
        },
        headers=headers or {},
    )


class TestRateLimiterUnit:
    """Unit tests for the RateLimiter class itself."""

    def test_allows_under_limit(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        assert all(limiter.is_allowed("key1") for _ in range(3))

    def test_rejects_over_limit(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        assert limiter.is_allowed("key1") is True
        assert limiter.is_allowed("key1") is True
        assert limiter.is_allowed("key1") is False

    def test_separate_keys_have_separate_limits(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.is_allowed("key_a") is True
        assert limiter.is_allowed("key_b") is True
        assert limiter.is_allowed("key_a") is False

    def test_reset_clears_all_state(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.is_allowed("key1")
        assert limiter.is_allowed("key1") is False
        limiter.reset()
        assert limiter.is_allowed("key1") is True

    def test_allows_after_window_expires(self):
        limiter = RateLimiter(max_requests=1, window_seconds=1)
        assert limiter.is_allowed("key1") is True
        assert limiter.is_allowed("key1") is False

        future = time.monotonic() + 2
        with patch("storefront.core.rate_limiter.time.monotonic", return_value=future):
            assert limiter.is_allowed("key1") is True

    def test_idle_callers_are_forgotten(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        for n in range(100):
            limiter.is_allowed(f"ip:10.0.0.{n}")
        assert limiter.tracked_keys() == 100

        future = time.monotonic() + 120
        with patch("storefront.core.rate_limiter.time.monotonic", return_value=future):
            assert limiter.is_allowed("ip:10.0.1.1") is True

        assert limiter.tracked_keys() == 1

    def test_retry_after_drops_expired_key(self):
        limiter = RateLimiter(max_requests=1, window_seconds=1)
        limiter.is_allowed("key1")

        future = time.monotonic() + 2
        with patch("storefront.core.rate_limiter.time.monotonic", return_value=future):
            assert limiter.retry_after("key1") == 0

        assert limiter.tracked_keys() == 0

    def test_retry_after(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.retry_after("key1") == 0
        limiter.is_allowed("key1")
        assert 1 <= limiter.retry_after("key1") <= 61


class TestValidateRateLimit:
    def test_rejects_over_limit(self, client):
        validation_rate_limiter.max_requests = 2
        assert _validate(client).status_code == 200
        assert _validate(client).status_code == 200

        response = _validate(client)
        assert response.status_code == 429
        assert "Too many coupon attempts" in response.json()["detail"]
        assert int(response.headers["Retry-After"]) >= 1

    def test_users_have_their_own_budget(self, client, customer_headers):
        validation_rate_limiter.max_requests = 1
        assert _validate(client).status_code == 200
        assert _validate(client).status_code == 429

        assert _validate(client, headers=customer_headers).status_code == 200
        assert _validate(client, headers=customer_headers).status_code == 429

    def test_rejections_count_against_budget(self, client):
        validation_rate_limiter.max_requests = 3
        statuses = [_validate(client).status_code for _ in range(4)]
        assert statuses == [200, 200, 200, 429]
