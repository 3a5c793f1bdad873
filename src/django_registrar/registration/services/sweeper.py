"""Periodic removal of expired registration intents."""

import datetime
import logging

from django.utils import timezone

from django_registrar.registration.intents import IntentStore

logger = logging.getLogger(__name__)


class IntentSweeper:
    """Delete expired intents from an intent store.

    Deletion is idempotent, so a sweep may overlap with materialization of
    the same intent. A sweep that runs before a slow payment completes turns
    that payment into an ``INTENT_MISSING`` outcome.
    """

    def __init__(self, store: IntentStore) -> None:
        self.store = store

    def sweep(self, now: datetime.datetime | None = None) -> int:
        now = now or timezone.now()
        removed = self.store.sweep(now)
        if removed:
            logger.info("Swept %s expired registration intent(s)", removed)
        else:
            logger.debug("No expired registration intents to sweep")
        return removed
