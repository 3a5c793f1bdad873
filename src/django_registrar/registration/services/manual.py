"""Operator confirmation of offline payments.

Bank transfers and walk-in payments never reach the gateway, so an operator
marks them confirmed from the payments desk or the Django admin. The
transition uses the same conditional update as automated confirmation.
"""

import logging

from django.contrib.auth.models import AbstractBaseUser
from django.core.exceptions import ValidationError
from django.db import transaction

from django_registrar.registration.errors import PaymentAlreadyConfirmed
from django_registrar.registration.models import PaymentRecord, Registration
from django_registrar.registration.services.payment_status import confirm_pending
from django_registrar.registration.signals import registration_confirmed

logger = logging.getLogger(__name__)


def _append_note(existing: str, note: str) -> str:
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


@transaction.atomic
def confirm_manually(
    payment_record_id: int,
    operator: AbstractBaseUser | None,
    note: str = "",
    transaction_reference: str = "",
) -> PaymentRecord:
    """Confirm a pending payment on behalf of an operator.

    Args:
        payment_record_id: Primary key of the ``PaymentRecord``.
        operator: The staff user confirming the payment.
        note: Optional text appended to the record's notes.
        transaction_reference: Optional receipt or bank reference.

    Returns:
        The refreshed, confirmed ``PaymentRecord``.

    Raises:
        PaymentRecord.DoesNotExist: If no record has this id.
        PaymentAlreadyConfirmed: If the record was already confirmed. The
            record is left untouched.
        ValidationError: If the record has failed.
    """
    record = PaymentRecord.objects.select_for_update().get(pk=payment_record_id)
    if record.status == PaymentRecord.Status.CONFIRMED:
        raise PaymentAlreadyConfirmed(record)
    if record.status == PaymentRecord.Status.FAILED:
        raise ValidationError("Failed payments cannot be confirmed.")

    fields = {"notes": _append_note(record.notes, note)}
    if transaction_reference:
        fields["transaction_reference"] = transaction_reference
    performed = confirm_pending(
        record.pk,
        actor=PaymentRecord.Actor.OPERATOR,
        user=operator,
        **fields,
    )
    record.refresh_from_db()
    if not performed:
        # Confirmed by another caller between the read and the update.
        raise PaymentAlreadyConfirmed(record)

    transaction.on_commit(
        lambda: registration_confirmed.send(
            sender=Registration,
            registration=record.registration,
            payment=record,
            actor=PaymentRecord.Actor.OPERATOR,
        )
    )
    logger.info(
        "Operator %s confirmed payment %s for registration %s",
        getattr(operator, "pk", None),
        record.pk,
        record.registration_id,
    )
    return record
