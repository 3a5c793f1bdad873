"""Registration submission.

Prices the selected offerings and routes the submission down one of three
paths:

* zero total: the registration is created immediately, with no payment.
* offline payment (bank transfer, walk-in): the registration is created
  immediately with a pending payment record for an operator to confirm.
* online payment: the submission is parked as an intent and a checkout
  session is opened; the registration is created by the reconciler once
  the gateway reports the session paid.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from django.core.exceptions import ValidationError

from django_registrar.conference.models import Conference, EventOffering
from django_registrar.registration.intents import (
    IntentLineItem,
    IntentStore,
    RegistrationIntent,
    default_intent_ttl,
    new_intent_reference,
)
from django_registrar.registration.models import PaymentRecord, Registration
from django_registrar.registration.services.materializer import (
    PaymentAttributes,
    RegistrationMaterializer,
)
from django_registrar.registration.stripe_client import INTENT_REFERENCE_KEY, CheckoutGateway
from django_registrar.registration.stripe_utils import to_minor_units

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")


@dataclass(frozen=True)
class SubmissionResult:
    """Where a submission ended up.

    ``registration_id`` is set when the registration was created
    immediately; ``session_id`` and ``redirect_url`` are set when the
    registrant must pay at the gateway first.
    """

    total: Decimal
    payment_mode: str
    registration_id: int | None = None
    registration_reference: str = ""
    intent_reference: str = ""
    session_id: str = ""
    redirect_url: str = ""

    @property
    def requires_payment(self) -> bool:
        return bool(self.session_id)


def price_selection(
    conference: Conference,
    offerings: Iterable[EventOffering],
) -> tuple[list[IntentLineItem], Decimal]:
    """Snapshot the selected offerings as line items and compute the total.

    The conference bundle discount applies when every active offering of
    ``conference.bundle_category`` is selected. The total never drops below
    zero.
    """
    selected = sorted(offerings, key=lambda o: (o.order, o.pk))
    line_items = [
        IntentLineItem(
            offering_id=offering.pk,
            name=offering.name,
            unit_price=offering.price,
            category=offering.category,
            date=offering.date,
            status=offering.status,
        )
        for offering in selected
    ]
    subtotal = sum((item.unit_price for item in line_items), _ZERO)

    discount = _ZERO
    if conference.bundle_category and conference.bundle_discount > _ZERO:
        bundle_ids = set(
            EventOffering.objects.filter(
                conference=conference,
                category=conference.bundle_category,
                is_active=True,
            ).values_list("pk", flat=True)
        )
        if bundle_ids and bundle_ids <= {item.offering_id for item in line_items}:
            discount = conference.bundle_discount

    return line_items, max(subtotal - discount, _ZERO)


def _ensure_not_registered(conference: Conference, email: str) -> None:
    if Registration.objects.filter(conference=conference, attendee__email=email).exists():
        raise ValidationError("This email address is already registered for this conference.")


def submit_registration(
    conference: Conference,
    cleaned_data: dict[str, Any],
    *,
    store: IntentStore,
    success_url: str,
    cancel_url: str,
    profile: dict[str, Any] | None = None,
    gateway_factory: Callable[[Conference], CheckoutGateway] = CheckoutGateway,
) -> SubmissionResult:
    """Accept a validated registration submission.

    Args:
        conference: The conference being registered for.
        cleaned_data: ``RegistrationSubmissionForm.cleaned_data``.
        store: Intent store for online submissions.
        success_url: Gateway redirect after payment.
        cancel_url: Gateway redirect when checkout is abandoned.
        profile: Extra JSON-compatible form data kept on the attendee.
        gateway_factory: Builds the gateway adapter for *conference*.

    Returns:
        A :class:`SubmissionResult`.

    Raises:
        ValidationError: If the email is already registered or nothing was
            selected.
        GatewayUnavailable: If the checkout session could not be opened.
    """
    email = cleaned_data["email"]
    _ensure_not_registered(conference, email)

    offerings = list(cleaned_data.get("offerings") or [])
    if not offerings:
        raise ValidationError("Select at least one event.")
    line_items, total = price_selection(conference, offerings)

    form_data = {**(profile or {})}
    for name in ("email", "first_name", "last_name", "phone", "organization"):
        form_data[name] = cleaned_data.get(name) or ""

    payment_mode = cleaned_data.get("payment_mode") or PaymentRecord.Mode.ONLINE
    intent = RegistrationIntent(
        reference=new_intent_reference(),
        conference_id=conference.pk,
        form_data=form_data,
        line_items=line_items,
        total=total,
        payment_mode=payment_mode,
    )

    if total == _ZERO:
        return _register_now(intent, store, payment=None)
    if payment_mode != PaymentRecord.Mode.ONLINE:
        pending = PaymentAttributes(mode=payment_mode, status=PaymentRecord.Status.PENDING)
        return _register_now(intent, store, payment=pending)
    return _open_checkout(
        conference,
        intent,
        store,
        gateway_factory(conference),
        success_url=success_url,
        cancel_url=cancel_url,
    )


def _register_now(
    intent: RegistrationIntent,
    store: IntentStore,
    payment: PaymentAttributes | None,
) -> SubmissionResult:
    result = RegistrationMaterializer(store).materialize(intent, payment)
    if not result.created:
        raise ValidationError("This email address is already registered for this conference.")
    reference = Registration.objects.values_list("reference", flat=True).get(pk=result.registration_id)
    return SubmissionResult(
        total=intent.total,
        payment_mode=intent.payment_mode,
        registration_id=result.registration_id,
        registration_reference=reference,
    )


def _open_checkout(
    conference: Conference,
    intent: RegistrationIntent,
    store: IntentStore,
    gateway: CheckoutGateway,
    *,
    success_url: str,
    cancel_url: str,
) -> SubmissionResult:
    stored = store.put(intent.reference, intent, default_intent_ttl())
    currency = gateway.currency
    try:
        session_id, redirect_url = gateway.create_session(
            amount=to_minor_units(stored.total, currency),
            currency=currency,
            line_items=stored.line_items,
            metadata={INTENT_REFERENCE_KEY: stored.reference, "email": stored.email},
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except Exception:
        store.delete(stored.reference)
        raise

    logger.info(
        "Opened checkout %s for %s at conference '%s' (intent %s, expires %s)",
        session_id,
        stored.email,
        conference.slug,
        stored.reference,
        stored.expires_at,
    )
    return SubmissionResult(
        total=stored.total,
        payment_mode=stored.payment_mode,
        intent_reference=stored.reference,
        session_id=session_id,
        redirect_url=redirect_url,
    )
