"""Confirmation reconciler.

Every confirmation path (gateway webhook, client poll, test harness) calls
:meth:`ConfirmationReconciler.reconcile` with a checkout session id. The
call is idempotent: any number of calls for the same session, in any order
and concurrently, produce at most one registration and one confirmed
payment record.

Expected outcomes are returned as a :class:`ReconciliationResult`. Only
infrastructure failures (gateway unavailable, unknown session, database
errors) raise.
"""

import enum
import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction

from django_registrar.registration.errors import IntentNotFound
from django_registrar.registration.intents import IntentStore
from django_registrar.registration.models import PaymentRecord, Registration
from django_registrar.registration.services.materializer import (
    PaymentAttributes,
    RegistrationMaterializer,
)
from django_registrar.registration.services.payment_status import confirm_pending, fail_pending
from django_registrar.registration.signals import payment_failed, payment_orphaned, registration_confirmed
from django_registrar.registration.stripe_client import (
    SESSION_EXPIRED,
    SESSION_FAILED,
    SESSION_PAID,
    CheckoutGateway,
    CheckoutSession,
)
from django_registrar.registration.stripe_utils import from_minor_units

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    ALREADY_CONFIRMED = "already-confirmed"
    NEWLY_CONFIRMED = "newly-confirmed"
    NOT_YET_PAID = "not-yet-paid"
    PAYMENT_FAILED = "payment-failed"
    INTENT_MISSING = "intent-missing"


_UI_STATES = {
    Outcome.ALREADY_CONFIRMED: "confirmed",
    Outcome.NEWLY_CONFIRMED: "confirmed",
    Outcome.NOT_YET_PAID: "processing",
    Outcome.PAYMENT_FAILED: "failed",
    Outcome.INTENT_MISSING: "needs-support",
}


@dataclass(frozen=True)
class ReconciliationResult:
    """What a reconciliation call found or did."""

    outcome: Outcome
    session_id: str
    registration_id: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.outcome in (Outcome.ALREADY_CONFIRMED, Outcome.NEWLY_CONFIRMED)

    @property
    def ui_state(self) -> str:
        """Return the client-facing state: processing, confirmed, failed or needs-support."""
        return _UI_STATES[self.outcome]


class ConfirmationReconciler:
    """Drive a checkout session to its terminal local state.

    Args:
        gateway: Gateway adapter for the session's conference.
        store: Intent store holding the pending registration intents.
        materializer: Optional materializer; one bound to *store* is built
            when omitted.
    """

    def __init__(
        self,
        gateway: CheckoutGateway,
        store: IntentStore,
        materializer: RegistrationMaterializer | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.materializer = materializer or RegistrationMaterializer(store)

    def reconcile(self, session_id: str, actor: str) -> ReconciliationResult:
        """Reconcile *session_id* against the gateway.

        Args:
            session_id: The checkout session id.
            actor: The ``PaymentRecord.Actor`` value of the caller.

        Raises:
            GatewayUnavailable: If the gateway cannot be reached.
            SessionNotFound: If the gateway does not know the session.
        """
        confirmed = self._confirmed_registration(session_id)
        if confirmed is not None:
            return ReconciliationResult(Outcome.ALREADY_CONFIRMED, session_id, confirmed)

        session = self.gateway.get_session_status(session_id)

        if session.status in (SESSION_FAILED, SESSION_EXPIRED):
            marked = fail_pending(session_id=session_id)
            logger.info("Checkout session %s is %s", session_id, session.status)
            payment_failed.send(sender=PaymentRecord, session_id=session_id, payments_marked=marked)
            return ReconciliationResult(Outcome.PAYMENT_FAILED, session_id)

        if session.status != SESSION_PAID:
            return ReconciliationResult(Outcome.NOT_YET_PAID, session_id)

        pending = (
            PaymentRecord.objects.filter(gateway_session_id=session_id)
            .values("pk", "status", "registration_id")
            .first()
        )
        if pending is not None:
            return self._confirm_existing(pending, session, actor)

        return self._materialize(session, actor)

    def _confirmed_registration(self, session_id: str) -> int | None:
        return (
            PaymentRecord.objects.filter(gateway_session_id=session_id, status=PaymentRecord.Status.CONFIRMED)
            .values_list("registration_id", flat=True)
            .first()
        )

    def _confirm_existing(self, record: dict, session: CheckoutSession, actor: str) -> ReconciliationResult:
        """Confirm a payment record that was created before the payment completed."""
        session_id = session.session_id
        registration_id = record["registration_id"]
        if record["status"] == PaymentRecord.Status.CONFIRMED:
            return ReconciliationResult(Outcome.ALREADY_CONFIRMED, session_id, registration_id)

        with transaction.atomic():
            performed = confirm_pending(
                record["pk"],
                actor=actor,
                gateway_payment_id=session.payment_id,
                gateway_payment_method=session.payment_method,
                gateway_reference=session.reference_number,
            )
            if performed:
                transaction.on_commit(lambda: self._send_confirmed(record["pk"], actor))

        if performed:
            return ReconciliationResult(Outcome.NEWLY_CONFIRMED, session_id, registration_id)
        if self._confirmed_registration(session_id) is not None:
            return ReconciliationResult(Outcome.ALREADY_CONFIRMED, session_id, registration_id)
        # The record was failed locally but the gateway now reports it paid.
        logger.error(
            "Checkout session %s is paid but payment record %s is no longer pending",
            session_id,
            record["pk"],
        )
        return ReconciliationResult(Outcome.PAYMENT_FAILED, session_id, registration_id)

    def _materialize(self, session: CheckoutSession, actor: str) -> ReconciliationResult:
        session_id = session.session_id
        try:
            intent = self.store.get(session.intent_reference)
        except IntentNotFound:
            logger.critical(
                "Checkout session %s is paid (%s %s) but registration intent %r is missing; manual follow-up required",
                session_id,
                session.amount,
                session.currency,
                session.intent_reference,
            )
            payment_orphaned.send(
                sender=PaymentRecord,
                session_id=session_id,
                intent_reference=session.intent_reference,
                session=session,
            )
            return ReconciliationResult(Outcome.INTENT_MISSING, session_id)

        payment = PaymentAttributes(
            mode=PaymentRecord.Mode.ONLINE,
            actor=actor,
            session_id=session_id,
            payment_id=session.payment_id,
            method=session.payment_method,
            reference=session.reference_number,
            amount=from_minor_units(session.amount, session.currency) if session.amount else None,
        )
        try:
            result = self.materializer.materialize(intent, payment)
        except IntegrityError:
            registration_id = self._confirmed_registration(session_id)
            if registration_id is None:
                # Same attendee confirmed concurrently through another session.
                registration_id = (
                    Registration.objects.filter(
                        conference_id=intent.conference_id,
                        attendee__email=intent.email,
                    )
                    .values_list("pk", flat=True)
                    .first()
                )
            if registration_id is None:
                raise
            logger.info("Lost confirmation race for session %s; registration %s exists", session_id, registration_id)
            return ReconciliationResult(Outcome.ALREADY_CONFIRMED, session_id, registration_id)

        if not result.created:
            logger.warning(
                "Checkout session %s is paid but %s already holds registration %s; possible duplicate payment",
                session_id,
                intent.email,
                result.registration_id,
            )
            return ReconciliationResult(Outcome.ALREADY_CONFIRMED, session_id, result.registration_id)
        return ReconciliationResult(Outcome.NEWLY_CONFIRMED, session_id, result.registration_id)

    @staticmethod
    def _send_confirmed(payment_id: int, actor: str) -> None:
        record = PaymentRecord.objects.select_related("registration").get(pk=payment_id)
        registration_confirmed.send(
            sender=Registration,
            registration=record.registration,
            payment=record,
            actor=actor,
        )
