"""
Tests for the sliding-window rate limiter and Stripe webhook verification.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from core import errors, middleware, stripe_client


class TestSlidingWindowLimiter:
    def _limiter(self, max_hits=3, window_s=60):
        return middleware.SlidingWindowLimiter(name="test", max_hits=max_hits, window_s=window_s, message="slow down")

    def test_allows_up_to_max_hits(self):
        limiter = self._limiter()
        assert [limiter.hit("1.2.3.4", now=t) for t in (0, 1, 2)] == [None, None, None]

    def test_blocks_and_reports_wait_time(self):
        limiter = self._limiter()
        for t in (0, 1, 2):
            limiter.hit("1.2.3.4", now=t)
        assert limiter.hit("1.2.3.4", now=10) == 50

    def test_window_slides(self):
        limiter = self._limiter()
        for t in (0, 1, 2):
            limiter.hit("1.2.3.4", now=t)
        assert limiter.hit("1.2.3.4", now=60.5) is None

    def test_keys_are_independent(self):
        limiter = self._limiter(max_hits=1)
        assert limiter.hit("a", now=0) is None
        assert limiter.hit("b", now=0) is None
        assert limiter.hit("a", now=1) is not None

    async def test_dependency_raises_rate_limited(self, monkeypatch):
        from starlette.requests import Request

        monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
        limiter = self._limiter(max_hits=1)
        request = Request({"type": "http", "method": "POST", "path": "/", "headers": [], "client": ("9.9.9.9", 1)})
        await limiter(request)
        with pytest.raises(errors.AppError) as exc_info:
            await limiter(request)
        assert exc_info.value.status_code == 429
        assert exc_info.value.code == "RATE_LIMITED"
        assert exc_info.value.extra["retryAfter"] >= 1

    async def test_dependency_is_a_no_op_when_disabled(self):
        from starlette.requests import Request

        limiter = self._limiter(max_hits=1)
        request = Request({"type": "http", "method": "POST", "path": "/", "headers": [], "client": ("9.9.9.9", 1)})
        for _ in range(3):
            await limiter(request)


class TestStripeWebhook:
    SECRET = "whsec_test"
    PAYLOAD = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}).encode()

    def _header(self, timestamp=None, secret=SECRET, payload=PAYLOAD):
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode() + payload
        signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    def test_valid_signature(self):
        event = stripe_client.construct_event(self.PAYLOAD, self._header(), self.SECRET)
        assert event["type"] == "invoice.paid"

    def test_any_matching_v1_signature_is_accepted(self):
        timestamp, signature = self._header().split(",", 1)
        header = f"{timestamp},v1=0000,{signature}"
        assert stripe_client.construct_event(self.PAYLOAD, header, self.SECRET)["id"] == "evt_1"

    def test_wrong_secret(self):
        with pytest.raises(stripe_client.SignatureVerificationError, match="No signatures"):
            stripe_client.construct_event(self.PAYLOAD, self._header(secret="other"), self.SECRET)

    def test_stale_timestamp(self):
        with pytest.raises(stripe_client.SignatureVerificationError, match="tolerance"):
            stripe_client.construct_event(self.PAYLOAD, self._header(int(time.time()) - 301), self.SECRET)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1700000000"])
    def test_malformed_headers(self, header):
        with pytest.raises(stripe_client.SignatureVerificationError):
            stripe_client.construct_event(self.PAYLOAD, header, self.SECRET)

    def test_missing_secret(self):
        with pytest.raises(stripe_client.SignatureVerificationError, match="not configured"):
            stripe_client.construct_event(self.PAYLOAD, self._header(), "")

    def test_signed_payload_that_is_not_an_event(self):
        payload = b'["not", "an", "event"]'
        with pytest.raises(stripe_client.SignatureVerificationError, match="not a Stripe event"):
            stripe_client.construct_event(payload, self._header(payload=payload), self.SECRET)


class TestStripeCalls:
    async def test_checkout_session_parameters(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test")
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return {"id": "cs_1", "url": "https://checkout.test/cs_1"}

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        session = await stripe_client.create_checkout_session(
            customer_id="cus_1",
            price_id="price_pro",
            quantity=0,
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            trial_days=14,
            metadata={"workspace_id": "ws"},
        )

        assert session == {"id": "cs_1", "url": "https://checkout.test/cs_1"}
        sent = calls[0]
        assert sent["api_key"] == "sk_test"
        assert sent["mode"] == "subscription"
        assert sent["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert sent["subscription_data"] == {"metadata": {"workspace_id": "ws"}, "trial_period_days": 14}

    async def test_sdk_errors_are_wrapped(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test")

        def failing_create(**kwargs):
            raise stripe.InvalidRequestError("No such customer: cus_x", "customer")

        monkeypatch.setattr(stripe.billing_portal.Session, "create", failing_create)
        with pytest.raises(stripe_client.StripeError, match="No such customer"):
            await stripe_client.create_portal_session(customer_id="cus_x", return_url="https://app.test")

    async def test_missing_secret_key(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        with pytest.raises(stripe_client.StripeError, match="STRIPE_SECRET_KEY"):
            await stripe_client.create_customer(email="ana@example.com")
