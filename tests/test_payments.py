"""
Tests for the Stripe Checkout client.
"""

from types import SimpleNamespace

import pytest
import stripe

from bakeshop.errors import ConfigurationError, UpstreamError
from bakeshop.payments import StripeCheckoutClient, to_minor_units


@pytest.fixture
def sdk_calls(monkeypatch):
    """Replace the SDK's checkout session calls and record their arguments."""
    calls = []
    # The client writes SDK module settings; restore them afterwards.
    for setting in ("api_base", "max_network_retries", "default_http_client"):
        monkeypatch.setattr(stripe, setting, getattr(stripe, setting, None))

    def fake_create(**kwargs):
        calls.append(("create", kwargs))
        return SimpleNamespace(id="cs_1", url="https://pay.test/cs_1", status="open", payment_status="unpaid")

    def fake_retrieve(session_id, **kwargs):
        calls.append(("retrieve", dict(kwargs, id=session_id)))
        return SimpleNamespace(id=session_id, status="expired", payment_status="unpaid")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    return calls


def failing(error):
    def _raise(*args, **kwargs):
        raise error

    return _raise


class TestMinorUnits:
    def test_round_half_up(self):
        assert to_minor_units(19.99) == 1999
        assert to_minor_units("0.125") == 13
        assert to_minor_units(3) == 300


class TestStripeCheckoutClient:
    def test_unconfigured_client(self, app, sdk_calls):
        client = StripeCheckoutClient("")
        assert client.configured is False
        with app.app_context():
            with pytest.raises(ConfigurationError):
                client.create_checkout_session({"mode": "payment"})
        assert sdk_calls == []

    def test_create_session_passes_key_and_idempotency_key(self, app, sdk_calls):
        client = StripeCheckoutClient("sk_test_123", api_base="https://stripe.test/", timeout=3)
        with app.app_context():
            session = client.create_checkout_session(
                {"mode": "payment", "line_items": [{"quantity": 2}]}, idempotency_key="order-1"
            )

        assert session == {
            "id": "cs_1",
            "url": "https://pay.test/cs_1",
            "status": "open",
            "payment_status": "unpaid",
        }
        name, kwargs = sdk_calls[0]
        assert name == "create"
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["idempotency_key"] == "order-1"
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"] == [{"quantity": 2}]
        assert stripe.api_base == "https://stripe.test"

    def test_create_session_without_idempotency_key(self, app, sdk_calls):
        with app.app_context():
            StripeCheckoutClient("sk_test_123").create_checkout_session({"mode": "payment"})
        assert "idempotency_key" not in sdk_calls[0][1]

    def test_retrieve_session(self, app, sdk_calls):
        with app.app_context():
            session = StripeCheckoutClient("sk_test_123").retrieve_checkout_session("cs_9")
        assert session["status"] == "expired"
        assert sdk_calls == [("retrieve", {"api_key": "sk_test_123", "id": "cs_9"})]

    def test_connection_error(self, app, sdk_calls, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session, "create", failing(stripe.APIConnectionError("connection refused"))
        )
        with app.app_context():
            with pytest.raises(UpstreamError) as excinfo:
                StripeCheckoutClient("sk_test_123").create_checkout_session({})
        assert excinfo.value.status_code == 502

    def test_rejected_request(self, app, sdk_calls, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session,
            "retrieve",
            failing(stripe.InvalidRequestError("No such checkout.session", "id")),
        )
        with app.app_context():
            with pytest.raises(UpstreamError):
                StripeCheckoutClient("sk_test_123").retrieve_checkout_session("cs_missing")
