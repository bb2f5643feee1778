"""
Stripe Checkout client.

Only the two calls the order workflow needs are wrapped: creating a checkout
session and reading one back. Every Stripe failure surfaces as
``UpstreamError`` so the order workflow deals with a single error type.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

import stripe
from flask import current_app

from .errors import ConfigurationError, UpstreamError

PAYMENTS_EXTENSION_KEY = "bakeshop.payments"
DEFAULT_API_BASE = "https://api.stripe.com"
SESSION_FIELDS = ("id", "url", "status", "payment_status")


def to_minor_units(amount) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def summarize_session(session) -> Dict[str, object]:
    return {field: getattr(session, field, None) for field in SESSION_FIELDS}


class StripeCheckoutClient:
    def __init__(
        self,
        secret_key: Optional[str],
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10,
    ):
        self.secret_key = (secret_key or "").strip()
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("Stripe is not configured on server")

    def create_checkout_session(
        self, params: Dict[str, object], idempotency_key: Optional[str] = None
    ) -> Dict[str, object]:
        self.ensure_configured()
        self._configure_sdk()
        request_options = {"api_key": self.secret_key}
        if idempotency_key:
            request_options["idempotency_key"] = idempotency_key
        try:
            session = stripe.checkout.Session.create(**request_options, **params)
        except stripe.StripeError as exc:
            self._log_failure("create checkout session", exc)
            raise UpstreamError("Payment provider rejected the request")
        return summarize_session(session)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, object]:
        self.ensure_configured()
        self._configure_sdk()
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            self._log_failure(f"retrieve checkout session {session_id}", exc)
            raise UpstreamError("Payment provider rejected the request")
        return summarize_session(session)

    def _configure_sdk(self) -> None:
        # The SDK keeps its endpoint and transport at module level.
        stripe.api_base = self.api_base
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    @staticmethod
    def _log_failure(operation: str, exc: "stripe.StripeError") -> None:
        current_app.logger.error(
            "Stripe could not %s (%s, http status %s): %s",
            operation,
            type(exc).__name__,
            getattr(exc, "http_status", None),
            getattr(exc, "user_message", None) or str(exc),
        )


def get_payments() -> StripeCheckoutClient:
    return current_app.extensions[PAYMENTS_EXTENSION_KEY]
