"""Turn a registration intent into durable records.

The materializer is the only code path that creates ``Registration`` rows.
Everything it writes for one intent (attendee, registration, line items and
payment record) is committed in a single transaction, and the intent is
removed from its store only once that transaction commits.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from django_registrar.registration.intents import IntentStore, RegistrationIntent
from django_registrar.registration.models import (
    Attendee,
    PaymentRecord,
    Registration,
    RegistrationLineItem,
)
from django_registrar.registration.signals import registration_confirmed
from django_registrar.settings import get_config

logger = logging.getLogger(__name__)

_ATTENDEE_FIELDS = ("first_name", "last_name", "phone", "organization")


def _generate_reference() -> str:
    """Generate a registration reference using the configured prefix.

    The prefix is set via ``DJANGO_REGISTRAR["registration_reference_prefix"]``
    (default ``"REG"``), producing references like ``REG-A1B2C3D4``.
    """
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(chars) for _ in range(8))
    return f"{get_config().registration_reference_prefix}-{suffix}"


@dataclass(frozen=True)
class PaymentAttributes:
    """Payment details recorded alongside a new registration."""

    mode: str = PaymentRecord.Mode.ONLINE
    actor: str = ""
    status: str = PaymentRecord.Status.CONFIRMED
    session_id: str | None = None
    payment_id: str = ""
    method: str = ""
    reference: str = ""
    notes: str = ""
    amount: Decimal | None = None


@dataclass(frozen=True)
class Materialized:
    registration_id: int
    created: bool


class RegistrationMaterializer:
    """Create the registration, line items and payment record for an intent.

    Args:
        store: The intent store the intent was read from. The intent is
            deleted from it after a successful commit.
    """

    def __init__(self, store: IntentStore) -> None:
        self.store = store

    def materialize(self, intent: RegistrationIntent, payment: PaymentAttributes | None) -> Materialized:
        """Persist *intent* as a registration.

        If the attendee already holds a registration for the conference, the
        existing registration is returned with ``created=False``. A payment
        carrying a gateway session is still recorded against it, flagged as
        a duplicate, and the intent is deleted; otherwise nothing is written.

        Args:
            intent: The intent to materialize.
            payment: How the registration was paid. ``None`` records a
                zero-total registration with no payment record.

        Returns:
            The registration id and whether this call created it.

        Raises:
            IntegrityError: If a concurrent caller wrote a conflicting row
                (same gateway session or same attendee). Nothing from this
                call is persisted.
        """
        with transaction.atomic():
            attendee = self._get_or_create_attendee(intent)

            existing = Registration.objects.filter(attendee=attendee).values_list("pk", flat=True).first()
            if existing is not None:
                logger.info(
                    "Attendee %s already registered for conference %s (registration %s)",
                    intent.email,
                    intent.conference_id,
                    existing,
                )
                if payment is not None and payment.session_id:
                    self._record_duplicate_payment(existing, intent, payment)
                return Materialized(registration_id=existing, created=False)

            registration = self._create_registration(intent, attendee)
            RegistrationLineItem.objects.bulk_create(
                [
                    RegistrationLineItem(
                        registration=registration,
                        offering_id=item.offering_id,
                        name=item.name,
                        date=item.date,
                        category=item.category,
                        unit_price=item.unit_price,
                        status=item.status,
                    )
                    for item in intent.line_items
                ]
            )

            record = None
            if payment is not None:
                record = self._create_payment(registration.pk, intent, payment)

            reference = intent.reference
            transaction.on_commit(lambda: self.store.delete(reference))
            if record is None or record.status == PaymentRecord.Status.CONFIRMED:
                transaction.on_commit(
                    lambda: registration_confirmed.send(
                        sender=Registration,
                        registration=registration,
                        payment=record,
                        actor=payment.actor if payment is not None else "",
                    )
                )

        logger.info(
            "Materialized registration %s for %s from intent %s",
            registration.reference,
            intent.email,
            intent.reference,
        )
        return Materialized(registration_id=registration.pk, created=True)

    def _get_or_create_attendee(self, intent: RegistrationIntent) -> Attendee:
        form_data = dict(intent.form_data)
        defaults = {name: str(form_data.pop(name, "") or "") for name in _ATTENDEE_FIELDS}
        form_data.pop("email", None)
        defaults["profile"] = form_data
        attendee, _created = Attendee.objects.get_or_create(
            conference_id=intent.conference_id,
            email=intent.email,
            defaults=defaults,
        )
        return attendee

    def _create_registration(self, intent: RegistrationIntent, attendee: Attendee) -> Registration:
        while True:
            reference = _generate_reference()
            if Registration.objects.filter(reference=reference).exists():
                continue
            try:
                with transaction.atomic():
                    return Registration.objects.create(
                        conference_id=intent.conference_id,
                        attendee=attendee,
                        reference=reference,
                        total=intent.total,
                    )
            except IntegrityError:
                # Only a reference collision is retried; anything else is a
                # conflicting registration and goes back to the caller.
                if Registration.objects.filter(reference=reference).exists():
                    continue
                raise

    def _create_payment(
        self,
        registration_id: int,
        intent: RegistrationIntent,
        payment: PaymentAttributes,
        notes: str | None = None,
    ) -> PaymentRecord:
        confirmed = payment.status == PaymentRecord.Status.CONFIRMED
        return PaymentRecord.objects.create(
            registration_id=registration_id,
            amount=intent.total if payment.amount is None else payment.amount,
            mode=payment.mode,
            status=payment.status,
            gateway_session_id=payment.session_id,
            gateway_payment_id=payment.payment_id,
            gateway_payment_method=payment.method,
            gateway_reference=payment.reference,
            notes=payment.notes if notes is None else notes,
            confirmed_at=timezone.now() if confirmed else None,
            confirmed_by=payment.actor if confirmed else "",
        )

    def _record_duplicate_payment(
        self,
        registration_id: int,
        intent: RegistrationIntent,
        payment: PaymentAttributes,
    ) -> None:
        """Keep a second paid session on the attendee's existing registration.

        The record makes later reconciliations of the session hit the local
        short-circuit and leaves the charge visible for a refund.
        """
        note = f"Duplicate payment: attendee already held registration {registration_id}; refund required."
        notes = f"{payment.notes}\n{note}" if payment.notes else note
        self._create_payment(registration_id, intent, payment, notes=notes)
        reference = intent.reference
        transaction.on_commit(lambda: self.store.delete(reference))
        logger.warning(
            "Recorded duplicate payment for session %s on registration %s",
            payment.session_id,
            registration_id,
        )
