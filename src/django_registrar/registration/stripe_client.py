"""Stripe Checkout adapter for per-conference payment collection.

Each conference has its own Stripe account keys, so the gateway is
initialized with a Conference instance and uses the modern
``stripe.StripeClient`` pattern (v1 namespace) for all API calls. Every call
is bounded by ``DJANGO_REGISTRAR["stripe"]["timeout_seconds"]``; transport
failures surface as :class:`GatewayUnavailable` so callers can retry.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import stripe

from django_registrar.conference.models import Conference
from django_registrar.registration.errors import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidAmount,
    MalformedPayload,
    SessionNotFound,
)
from django_registrar.registration.intents import IntentLineItem
from django_registrar.registration.stripe_utils import obfuscate_key, to_minor_units
from django_registrar.settings import get_config

logger = logging.getLogger(__name__)

INTENT_REFERENCE_KEY = "intent_reference"

SESSION_OPEN = "open"
SESSION_PAID = "paid"
SESSION_FAILED = "failed"
SESSION_EXPIRED = "expired"

_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


@dataclass(frozen=True)
class CheckoutSession:
    """The gateway's view of one payment attempt."""

    session_id: str
    status: str
    amount: int
    currency: str
    payment_id: str = ""
    payment_method: str = ""
    reference_number: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def intent_reference(self) -> str:
        return self.metadata.get(INTENT_REFERENCE_KEY, "")


@dataclass(frozen=True)
class WebhookEvent:
    """A parsed gateway webhook delivery."""

    event_id: str
    event_type: str
    session_id: str | None
    payment_intent_id: str | None
    attributes: dict[str, Any]
    livemode: bool = False
    payload: dict[str, Any] = field(default_factory=dict)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read *key* from a Stripe object or plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, default)


def _session_status(session: Any) -> str:
    """Collapse Stripe's session and payment intent state into one status."""
    status = _get(session, "status")
    payment_status = _get(session, "payment_status")
    if status == "expired":
        return SESSION_EXPIRED
    if status == "complete" and payment_status in ("paid", "no_payment_required"):
        return SESSION_PAID

    intent_status = _get(_get(session, "payment_intent"), "status")
    if intent_status == "canceled":
        return SESSION_FAILED
    if status == "complete" and payment_status == "unpaid" and intent_status == "requires_payment_method":
        return SESSION_FAILED
    return SESSION_OPEN


class CheckoutGateway:
    """Per-conference Stripe Checkout client.

    Args:
        conference: The conference whose Stripe keys will be used.

    Raises:
        ValueError: If the conference has no Stripe secret key configured.
    """

    def __init__(self, conference: Conference) -> None:
        raw_key = conference.stripe_secret_key
        if not raw_key:
            msg = (
                f"Conference '{conference.slug}' does not have a Stripe secret key configured. "
                f"Set 'stripe_secret_key' on the Conference record before initializing CheckoutGateway."
            )
            raise ValueError(msg)

        self.conference = conference
        stripe_config = get_config().stripe
        self.client = stripe.StripeClient(
            str(raw_key),
            stripe_version=stripe_config.api_version,
            max_network_retries=stripe_config.max_network_retries,
            http_client=stripe.HTTPXClient(timeout=stripe_config.timeout_seconds, allow_sync_methods=True),
        )

        logger.debug(
            "Initialized CheckoutGateway for conference '%s' (key %s)",
            conference.slug,
            obfuscate_key(str(raw_key)),
        )

    @property
    def currency(self) -> str:
        return (self.conference.currency or get_config().currency).upper()

    def create_session(
        self,
        amount: int,
        currency: str,
        line_items: list[IntentLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> tuple[str, str]:
        """Create a Stripe Checkout session for *amount* minor units.

        When the line items do not add up to *amount* (a bundle discount was
        applied) a single summary line for the full amount is sent instead.

        Args:
            amount: Total to charge in the smallest currency unit.
            currency: ISO 4217 currency code.
            line_items: The priced selections to show on the checkout page.
            metadata: Session metadata; must carry ``intent_reference``.
            success_url: Redirect target after payment. ``{CHECKOUT_SESSION_ID}``
                is substituted by Stripe.
            cancel_url: Redirect target when the buyer abandons checkout.

        Returns:
            A ``(session_id, redirect_url)`` tuple.

        Raises:
            InvalidAmount: If *amount* is not positive.
            ValueError: If *metadata* lacks the intent reference.
            GatewayUnavailable: On transport errors or timeouts.
            GatewayRejected: If Stripe refuses the request (for example a
                revoked key).
        """
        if amount <= 0:
            msg = f"Checkout amount must be positive, got {amount}"
            raise InvalidAmount(msg)
        if not metadata.get(INTENT_REFERENCE_KEY):
            msg = f"Checkout metadata must include '{INTENT_REFERENCE_KEY}'"
            raise ValueError(msg)

        currency = currency.lower()
        stripe_items = [
            {
                "price_data": {
                    "currency": currency,
                    "unit_amount": to_minor_units(item.unit_price, currency),
                    "product_data": {
                        "name": item.name,
                        **({"description": item.date.isoformat()} if item.date else {}),
                    },
                },
                "quantity": 1,
            }
            for item in line_items
        ]
        if sum(item["price_data"]["unit_amount"] for item in stripe_items) != amount:
            names = ", ".join(item.name for item in line_items)
            stripe_items = [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount,
                        "product_data": {
                            "name": f"{self.conference.name} registration",
                            **({"description": names[:500]} if names else {}),
                        },
                    },
                    "quantity": 1,
                },
            ]

        try:
            session = self.client.v1.checkout.sessions.create(
                params={
                    "mode": "payment",
                    "line_items": stripe_items,
                    "metadata": {**metadata, "conference_id": str(self.conference.pk)},
                    "payment_intent_data": {"metadata": dict(metadata)},
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                },
                options={"idempotency_key": f"checkout-{metadata[INTENT_REFERENCE_KEY]}"},
            )
        except _TRANSIENT_ERRORS as exc:
            logger.warning(
                "Stripe unavailable creating checkout for conference '%s': %s",
                self.conference.slug,
                exc,
            )
            raise GatewayUnavailable(str(exc)) from exc
        except stripe.StripeError as exc:
            logger.error(
                "Stripe rejected checkout for conference '%s' (key %s): %s",
                self.conference.slug,
                obfuscate_key(str(self.conference.stripe_secret_key or "")),
                exc,
            )
            raise GatewayRejected(str(exc)) from exc

        logger.info(
            "Created checkout session %s for %s %s (intent %s)",
            session.id,
            amount,
            currency.upper(),
            metadata[INTENT_REFERENCE_KEY],
        )
        return session.id, session.url

    def get_session_status(self, session_id: str) -> CheckoutSession:
        """Fetch the current state of a checkout session from Stripe.

        Raises:
            SessionNotFound: If Stripe has no session with this id.
            GatewayUnavailable: On transport errors or timeouts.
            GatewayRejected: If Stripe refuses the request.
        """
        try:
            session = self.client.v1.checkout.sessions.retrieve(
                session_id,
                params={"expand": ["payment_intent", "payment_intent.latest_charge"]},
            )
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise SessionNotFound(session_id) from exc
            logger.error("Stripe rejected retrieval of session %s: %s", session_id, exc)
            raise GatewayRejected(str(exc)) from exc
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Stripe unavailable retrieving session %s: %s", session_id, exc)
            raise GatewayUnavailable(str(exc)) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe rejected retrieval of session %s: %s", session_id, exc)
            raise GatewayRejected(str(exc)) from exc

        payment_intent = _get(session, "payment_intent")
        charge = _get(payment_intent, "latest_charge")
        method_details = _get(charge, "payment_method_details")
        if isinstance(payment_intent, str):
            payment_id = payment_intent
        else:
            payment_id = str(_get(payment_intent, "id", "") or "")

        metadata = _get(session, "metadata") or {}
        return CheckoutSession(
            session_id=str(_get(session, "id", session_id)),
            status=_session_status(session),
            amount=int(_get(session, "amount_total", 0) or 0),
            currency=str(_get(session, "currency", "") or "").upper(),
            payment_id=payment_id,
            payment_method=str(_get(method_details, "type", "") or ""),
            reference_number=str(_get(charge, "receipt_number", "") or _get(charge, "id", "") or ""),
            metadata={str(k): str(v) for k, v in dict(metadata).items()},
        )

    def parse_webhook_event(self, payload: bytes | str, signature: str = "") -> WebhookEvent:
        """Parse (and, when a webhook secret is configured, verify) a webhook body.

        Without a webhook secret the JSON is accepted unverified; reconciliation
        always re-reads the session from Stripe, so a forged body cannot
        confirm a payment.

        Raises:
            MalformedPayload: If the body is not a valid event or the
                signature does not verify.
        """
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedPayload("Webhook body is not UTF-8") from exc

        webhook_secret = self.conference.stripe_webhook_secret
        if webhook_secret:
            try:
                stripe.WebhookSignature.verify_header(
                    payload,
                    signature,
                    str(webhook_secret),
                    tolerance=get_config().stripe.webhook_tolerance,
                )
            except stripe.SignatureVerificationError as exc:
                raise MalformedPayload(str(exc)) from exc
        else:
            logger.warning(
                "Conference '%s' has no webhook secret configured; accepting unverified payload",
                self.conference.slug,
            )

        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise MalformedPayload("Webhook body is not valid JSON") from exc
        return webhook_event_from_dict(data)


def webhook_event_from_dict(data: Any) -> WebhookEvent:
    """Build a :class:`WebhookEvent` from a decoded Stripe event payload.

    Raises:
        MalformedPayload: If the event id or type is missing.
    """
    if not isinstance(data, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    event_id = data.get("id")
    event_type = data.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
        raise MalformedPayload("Webhook event is missing 'id' or 'type'")

    obj = data.get("data", {})
    obj = obj.get("object", {}) if isinstance(obj, dict) else {}
    if not isinstance(obj, dict):
        obj = {}

    session_id = None
    payment_intent_id = None
    if obj.get("object") == "checkout.session":
        session_id = obj.get("id")
        payment_intent_id = obj.get("payment_intent")
    elif obj.get("object") == "payment_intent":
        payment_intent_id = obj.get("id")

    return WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        session_id=str(session_id) if session_id else None,
        payment_intent_id=str(payment_intent_id) if isinstance(payment_intent_id, str) else None,
        attributes=obj,
        livemode=bool(data.get("livemode", False)),
        payload=data,
    )
