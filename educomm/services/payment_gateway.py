"""
Payment gateway adapter.

The services only talk to ``PaymentGateway``; ``StripeGateway`` is the
production implementation and tests inject a fake with the same methods.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe

from educomm.config import Config

CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Gateway call failed (network, auth, invalid request)."""


class SessionNotFoundError(PaymentGatewayError):
    pass


class WebhookVerificationError(PaymentGatewayError):
    """Webhook payload could not be parsed or its signature did not verify."""


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Optional[int]) -> Optional[Decimal]:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


@dataclass(frozen=True)
class CheckoutSession:
    id: Optional[str]
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None
    created: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def amount_paid(self) -> Optional[Decimal]:
        return from_minor_units(self.amount_total)

    @classmethod
    def from_payload(cls, payload: Any) -> "CheckoutSession":
        """Build from a Stripe object or the equivalent plain dict."""
        metadata = _field(payload, "metadata") or {}
        if not isinstance(metadata, dict) and hasattr(metadata, "to_dict"):
            metadata = metadata.to_dict()
        created = _field(payload, "created")
        if isinstance(created, (int, float)):
            created = datetime.fromtimestamp(created, tz=timezone.utc)
        elif not isinstance(created, datetime):
            created = None
        return cls(
            id=_field(payload, "id"),
            payment_status=_field(payload, "payment_status"),
            amount_total=_field(payload, "amount_total"),
            metadata={str(k): str(v) for k, v in dict(metadata).items() if v is not None},
            url=_field(payload, "url"),
            created=created,
        )


@dataclass(frozen=True)
class PaymentEvent:
    type: str
    session: Optional[CheckoutSession] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "PaymentEvent":
        event_type = _field(payload, "type") or ""
        data_object = _field(_field(payload, "data"), "object")
        session = None
        if event_type.startswith("checkout.session.") and data_object is not None:
            session = CheckoutSession.from_payload(data_object)
        return cls(type=event_type, session=session)


class PaymentGateway:
    """Capability consumed by the payment service."""

    def create_checkout_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    def get_session(self, session_id: str) -> CheckoutSession:
        raise NotImplementedError

    def construct_event(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """Stripe Checkout implementation."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None) -> None:
        self.api_key = api_key if api_key is not None else Config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else Config.STRIPE_WEBHOOK_SECRET

    def create_checkout_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                line_items=line_items,
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_method_types=["card"],
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError(str(exc)) from exc
        return CheckoutSession.from_payload(session)

    def get_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise SessionNotFoundError(f"Session {session_id} not found") from exc
            raise PaymentGatewayError(str(exc)) from exc
        except stripe.StripeError as exc:
            raise PaymentGatewayError(str(exc)) from exc
        return CheckoutSession.from_payload(session)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except ValueError as exc:
            raise WebhookVerificationError("Invalid payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid signature") from exc
        return PaymentEvent.from_payload(event)
