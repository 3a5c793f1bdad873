"""Management command to reconcile a Stripe checkout session by hand.

Runs the same reconciliation as the webhook and the client poll. Useful for
end-to-end testing against Stripe test mode and for operators following up
on a webhook that never arrived::

    manage.py reconcile_checkout --conference pycon-us-2026 cs_test_a1b2c3
"""

import argparse

from django.core.management.base import BaseCommand, CommandError

from django_registrar.conference.models import Conference
from django_registrar.registration.errors import GatewayRejected, GatewayUnavailable, SessionNotFound
from django_registrar.registration.intents import get_intent_store
from django_registrar.registration.models import PaymentRecord
from django_registrar.registration.services.reconciler import ConfirmationReconciler
from django_registrar.registration.stripe_client import CheckoutGateway


class Command(BaseCommand):
    """Reconcile one checkout session against Stripe."""

    help = "Reconcile a Stripe checkout session and materialize its registration if paid"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("session_id", help="Stripe checkout session id.")
        parser.add_argument(
            "--conference",
            required=True,
            help="Conference slug the session belongs to.",
        )
        parser.add_argument(
            "--actor",
            choices=[PaymentRecord.Actor.TEST_HARNESS, PaymentRecord.Actor.OPERATOR],
            default=PaymentRecord.Actor.TEST_HARNESS,
            help="Actor recorded if this call confirms the payment (default: test-harness).",
        )

    def handle(self, *args: object, **options: object) -> None:
        slug = str(options["conference"])
        session_id = str(options["session_id"])
        try:
            conference = Conference.objects.get(slug=slug)
        except Conference.DoesNotExist as exc:
            msg = f"Conference with slug '{slug}' not found"
            raise CommandError(msg) from exc

        try:
            gateway = CheckoutGateway(conference)
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        reconciler = ConfirmationReconciler(gateway, get_intent_store())
        try:
            result = reconciler.reconcile(session_id, str(options["actor"]))
        except SessionNotFound as exc:
            msg = f"Stripe has no checkout session '{session_id}'"
            raise CommandError(msg) from exc
        except GatewayUnavailable as exc:
            msg = f"Stripe is unavailable: {exc}"
            raise CommandError(msg) from exc
        except GatewayRejected as exc:
            msg = f"Stripe rejected the request: {exc}"
            raise CommandError(msg) from exc

        line = f"{session_id}: {result.outcome.value}"
        if result.registration_id is not None:
            line += f" (registration {result.registration_id})"
        if result.confirmed:
            self.stdout.write(self.style.SUCCESS(line))
        elif result.ui_state == "processing":
            self.stdout.write(line)
        else:
            self.stdout.write(self.style.WARNING(line))
