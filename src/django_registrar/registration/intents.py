"""Registration intent storage.

A registration intent is a submitted-but-unpaid registration: the raw form
data and the selected line items, parked under an opaque reference until
the payment gateway confirms payment (or the intent's TTL runs out).

Stores must be swappable. The backend is chosen with the
``DJANGO_REGISTRAR["intent_store"]`` dotted path and obtained through
:func:`get_intent_store`, then handed to the services that need it.
"""

import datetime
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from django.core.cache import caches
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from django.utils.module_loading import import_string

from django_registrar.registration.errors import IntentNotFound
from django_registrar.registration.models import PendingRegistration
from django_registrar.settings import get_config

logger = logging.getLogger(__name__)

_REFERENCE_PREFIX = "int_"


def new_intent_reference() -> str:
    """Return a fresh, unguessable intent reference like ``int_Q2x...``."""
    return f"{_REFERENCE_PREFIX}{secrets.token_urlsafe(16)}"


@dataclass(frozen=True)
class IntentLineItem:
    """An offering selected on the submission, priced at submission time."""

    offering_id: int | None
    name: str
    unit_price: Decimal
    category: str = ""
    date: datetime.date | None = None
    status: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "offering_id": self.offering_id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "category": self.category,
            "date": self.date.isoformat() if self.date else None,
            "status": self.status,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "IntentLineItem":
        raw_date = data.get("date")
        return cls(
            offering_id=data.get("offering_id"),
            name=str(data["name"]),
            unit_price=Decimal(str(data["unit_price"])),
            category=str(data.get("category") or ""),
            date=parse_date(raw_date) if raw_date else None,
            status=str(data.get("status") or ""),
        )


@dataclass(frozen=True)
class RegistrationIntent:
    """A registration waiting for payment.

    ``created_at`` and ``expires_at`` are filled in by the store on ``put``.
    """

    reference: str
    conference_id: int
    form_data: dict[str, Any]
    line_items: list[IntentLineItem]
    total: Decimal
    payment_mode: str = "online"
    created_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def email(self) -> str:
        """Return the normalized business key of the registrant."""
        return str(self.form_data.get("email", "")).strip().lower()

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict (timestamps excluded)."""
        return {
            "conference_id": self.conference_id,
            "form_data": self.form_data,
            "line_items": [item.to_payload() for item in self.line_items],
            "total": str(self.total),
            "payment_mode": self.payment_mode,
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(
        cls,
        reference: str,
        payload: dict[str, Any],
        *,
        created_at: datetime.datetime | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> "RegistrationIntent":
        """Rebuild an intent from :meth:`to_payload` output."""
        return cls(
            reference=reference,
            conference_id=int(payload["conference_id"]),
            form_data=dict(payload.get("form_data") or {}),
            line_items=[IntentLineItem.from_payload(item) for item in payload.get("line_items", [])],
            total=Decimal(str(payload.get("total", "0"))),
            payment_mode=str(payload.get("payment_mode") or "online"),
            created_at=created_at,
            expires_at=expires_at,
            metadata=dict(payload.get("metadata") or {}),
        )


class IntentStore(ABC):
    """Interface for registration intent storage with a time-to-live.

    Implementations must be safe to call concurrently from request threads.
    Reading an expired intent must behave exactly like reading one that was
    never stored.
    """

    @abstractmethod
    def put(self, reference: str, intent: RegistrationIntent, ttl: datetime.timedelta) -> RegistrationIntent:
        """Store *intent* under *reference*, replacing any previous value.

        Returns:
            The stored intent with ``created_at`` and ``expires_at`` set.
        """
        ...

    @abstractmethod
    def get(self, reference: str) -> RegistrationIntent:
        """Return the live intent for *reference*.

        Raises:
            IntentNotFound: If no intent exists or it has expired.
        """
        ...

    @abstractmethod
    def delete(self, reference: str) -> None:
        """Remove the intent for *reference*. Deleting a missing intent is a no-op."""
        ...

    @abstractmethod
    def sweep(self, now: datetime.datetime | None = None) -> int:
        """Delete intents that expired at or before *now* and return how many went."""
        ...


class DatabaseIntentStore(IntentStore):
    """Intent store backed by the ``PendingRegistration`` table."""

    def put(self, reference: str, intent: RegistrationIntent, ttl: datetime.timedelta) -> RegistrationIntent:
        now = timezone.now()
        stored = replace(intent, reference=reference, created_at=now, expires_at=now + ttl)
        defaults = {
            "payload": stored.to_payload(),
            "created_at": stored.created_at,
            "expires_at": stored.expires_at,
        }
        try:
            with transaction.atomic():
                PendingRegistration.objects.update_or_create(reference=reference, defaults=defaults)
        except IntegrityError:
            # A concurrent put for the same reference inserted first.
            PendingRegistration.objects.filter(reference=reference).update(**defaults)
        logger.debug("Stored registration intent %s until %s", reference, stored.expires_at)
        return stored

    def get(self, reference: str) -> RegistrationIntent:
        row = PendingRegistration.objects.filter(reference=reference, expires_at__gt=timezone.now()).first()
        if row is None:
            raise IntentNotFound(reference)
        return RegistrationIntent.from_payload(
            reference,
            row.payload,
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    def delete(self, reference: str) -> None:
        PendingRegistration.objects.filter(reference=reference).delete()

    def sweep(self, now: datetime.datetime | None = None) -> int:
        now = now or timezone.now()
        batch_size = get_config().sweep_batch_size
        removed = 0
        while True:
            expired = list(
                PendingRegistration.objects.filter(expires_at__lte=now).values_list("pk", flat=True)[:batch_size]
            )
            if not expired:
                return removed
            deleted, _ = PendingRegistration.objects.filter(pk__in=expired, expires_at__lte=now).delete()
            removed += deleted


class CacheIntentStore(IntentStore):
    """Intent store backed by Django's cache framework.

    The cache enforces the TTL itself; timestamps are kept alongside the
    payload so a cache that outlives the TTL is still treated as expired.
    """

    key_prefix = "registrar:intent:"

    def __init__(self, alias: str | None = None) -> None:
        self.alias = alias or get_config().intent_cache_alias

    @property
    def cache(self) -> Any:
        return caches[self.alias]

    def _key(self, reference: str) -> str:
        return f"{self.key_prefix}{reference}"

    def put(self, reference: str, intent: RegistrationIntent, ttl: datetime.timedelta) -> RegistrationIntent:
        now = timezone.now()
        stored = replace(intent, reference=reference, created_at=now, expires_at=now + ttl)
        entry = {
            "payload": stored.to_payload(),
            "created_at": now.isoformat(),
            "expires_at": stored.expires_at.isoformat(),
        }
        self.cache.set(self._key(reference), entry, timeout=max(int(ttl.total_seconds()), 1))
        return stored

    def get(self, reference: str) -> RegistrationIntent:
        entry = self.cache.get(self._key(reference))
        if entry is None:
            raise IntentNotFound(reference)
        expires_at = parse_datetime(entry["expires_at"])
        if expires_at is None or expires_at <= timezone.now():
            self.delete(reference)
            raise IntentNotFound(reference)
        return RegistrationIntent.from_payload(
            reference,
            entry["payload"],
            created_at=parse_datetime(entry["created_at"]),
            expires_at=expires_at,
        )

    def delete(self, reference: str) -> None:
        self.cache.delete(self._key(reference))

    def sweep(self, now: datetime.datetime | None = None) -> int:  # noqa: ARG002
        return 0


def get_intent_store() -> IntentStore:
    """Instantiate the intent store configured in ``DJANGO_REGISTRAR["intent_store"]``."""
    store_class = import_string(get_config().intent_store)
    return store_class()


def default_intent_ttl() -> datetime.timedelta:
    """Return the configured intent time-to-live."""
    return datetime.timedelta(minutes=get_config().intent_ttl_minutes)
