"""Monotonic payment status transitions.

Every status change on a ``PaymentRecord`` goes through this module. Each
transition is a single conditional ``UPDATE ... WHERE status = 'pending'``,
so two racing callers cannot both perform it and a confirmed or failed
record is never rewritten.
"""

import datetime
import logging

from django.contrib.auth.models import AbstractBaseUser
from django.db.models import Q
from django.utils import timezone

from django_registrar.registration.models import PaymentRecord

logger = logging.getLogger(__name__)


def confirm_pending(
    payment_id: int,
    *,
    actor: str,
    confirmed_at: datetime.datetime | None = None,
    user: AbstractBaseUser | None = None,
    **fields: object,
) -> bool:
    """Move a pending payment to ``confirmed``.

    Args:
        payment_id: Primary key of the ``PaymentRecord``.
        actor: A ``PaymentRecord.Actor`` value.
        confirmed_at: Confirmation time; defaults to now.
        user: The operator confirming the payment, if any.
        **fields: Extra columns to set in the same statement (gateway ids,
            notes, transaction reference).

    Returns:
        ``True`` if this call performed the transition, ``False`` if the
        record was no longer pending.
    """
    updated = PaymentRecord.objects.filter(pk=payment_id, status=PaymentRecord.Status.PENDING).update(
        status=PaymentRecord.Status.CONFIRMED,
        confirmed_at=confirmed_at or timezone.now(),
        confirmed_by=actor,
        confirmed_by_user=user,
        updated_at=timezone.now(),
        **fields,
    )
    if updated:
        logger.info("Payment %s confirmed by %s", payment_id, actor)
    return bool(updated)


def fail_pending(*, session_id: str | None = None, payment_id: int | None = None) -> int:
    """Move pending payments matching *session_id* or *payment_id* to ``failed``.

    Returns:
        The number of records transitioned.
    """
    if session_id is None and payment_id is None:
        msg = "fail_pending() needs a session_id or a payment_id"
        raise ValueError(msg)
    match = Q()
    if session_id is not None:
        match &= Q(gateway_session_id=session_id)
    if payment_id is not None:
        match &= Q(pk=payment_id)
    updated = (
        PaymentRecord.objects.filter(match, status=PaymentRecord.Status.PENDING)
        .update(status=PaymentRecord.Status.FAILED, updated_at=timezone.now())
    )
    if updated:
        logger.warning("Marked %s pending payment(s) failed (session=%s, payment=%s)", updated, session_id, payment_id)
    return updated
