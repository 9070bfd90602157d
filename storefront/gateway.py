"""
Payment gateway adapter.

The checkout engine talks to a ``PaymentGateway``; ``StripeGateway`` backs it
with Stripe Checkout Sessions. Card handling stays on the gateway's hosted page,
so this module only creates/expires sessions and verifies signed callbacks.
"""
import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

import stripe

from .config import Settings
from .errors import InvalidSignature, PaymentGatewayError

logger = logging.getLogger(__name__)

EVENT_COMPLETED = "checkout.session.completed"
EVENT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
EVENT_ASYNC_FAILED = "checkout.session.async_payment_failed"
EVENT_EXPIRED = "checkout.session.expired"


@dataclass(frozen=True)
class GatewayLineItem:
    name: str
    description: str
    image: str
    unit_amount: int  # minor currency units
    quantity: int


@dataclass(frozen=True)
class GatewaySession:
    id: str
    url: str


@dataclass(frozen=True)
class GatewayEvent:
    id: str
    type: str
    session_id: Optional[str]
    payment_status: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentGateway:
    def create_session(
        self,
        line_items: List[GatewayLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewaySession:
        raise NotImplementedError

    def expire_session(self, session_id: str) -> None:
        raise NotImplementedError

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        currency: str = "usd",
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def _require_key(self) -> str:
        if not self.secret_key:
            raise PaymentGatewayError("payment gateway is not configured")
        return self.secret_key

    def create_session(self, line_items, success_url, cancel_url, metadata=None) -> GatewaySession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": item.name,
                            "description": item.description,
                            "images": [item.image],
                        },
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if metadata:
            params["metadata"] = metadata
        try:
            session = stripe.checkout.Session.create(api_key=self._require_key(), **params)
        except stripe.StripeError as e:
            logger.error("Stripe session creation failed: %s", getattr(e, "user_message", None) or e)
            raise PaymentGatewayError("payment gateway unavailable") from e
        return GatewaySession(id=session["id"], url=session["url"])

    def expire_session(self, session_id: str) -> None:
        try:
            stripe.checkout.Session.expire(session_id, api_key=self._require_key())
        except stripe.StripeError as e:
            logger.error("Stripe session expiry failed for %s: %s", session_id, e)
            raise PaymentGatewayError("payment gateway unavailable") from e

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise PaymentGatewayError("webhook secret is not configured")
        if not signature:
            raise InvalidSignature("missing signature header")
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature() from e
        try:
            event = json.loads(body)
            obj = event["data"]["object"]
            return GatewayEvent(
                id=event["id"],
                type=event["type"],
                session_id=obj.get("id"),
                payment_status=obj.get("payment_status"),
                metadata=obj.get("metadata") or {},
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidSignature("malformed event payload") from e


def configure_stripe(timeout: float, max_retries: int) -> None:
    # The stripe module keeps one HTTP client and retry policy per process.
    # Bound every gateway call; a timeout surfaces as APIConnectionError.
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    stripe.max_network_retries = max_retries


@lru_cache(maxsize=1)
def gateway_from_settings(settings: Settings) -> StripeGateway:
    """Build the process gateway once; a new one only when settings change."""
    configure_stripe(settings.gateway_timeout_seconds, settings.gateway_max_retries)
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.currency,
    )
