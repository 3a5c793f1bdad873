"""Management command to delete expired registration intents.

Run periodically (e.g. from cron) when using the database intent store::

    manage.py sweep_registration_intents
"""

import argparse

from django.core.management.base import BaseCommand

from django_registrar.registration.intents import get_intent_store
from django_registrar.registration.services.sweeper import IntentSweeper


class Command(BaseCommand):
    """Delete registration intents whose time-to-live has passed."""

    help = "Delete expired registration intents"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Report the configured store without deleting anything.",
        )

    def handle(self, *args: object, **options: object) -> None:
        store = get_intent_store()
        if options["dry_run"]:
            self.stdout.write(f"Would sweep expired intents from {type(store).__name__}")
            return
        removed = IntentSweeper(store).sweep()
        self.stdout.write(self.style.SUCCESS(f"Removed {removed} expired registration intent(s)"))
