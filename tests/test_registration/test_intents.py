"""Tests for registration intent storage in django_registrar.registration.intents."""

import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.core.cache import caches
from django.test import override_settings
from django.utils import timezone

from django_registrar.registration.errors import IntentNotFound
from django_registrar.registration.intents import (
    CacheIntentStore,
    DatabaseIntentStore,
    IntentLineItem,
    RegistrationIntent,
    default_intent_ttl,
    get_intent_store,
    new_intent_reference,
)
from django_registrar.registration.models import PendingRegistration

_NOW_PATH = "django_registrar.registration.intents.timezone.now"


def _intent(reference="int_abc", email="Ada@Example.com ", total="95.00"):
    return RegistrationIntent(
        reference=reference,
        conference_id=1,
        form_data={"email": email, "first_name": "Ada", "last_name": "Lovelace", "dietary": "vegan"},
        line_items=[
            IntentLineItem(
                offering_id=7,
                name="Main Conference",
                unit_price=Decimal(total),
                category="conference",
                date=datetime.date(2027, 6, 1),
                status="confirmed",
            ),
        ],
        total=Decimal(total),
    )


@pytest.fixture(autouse=True)
def clear_cache():
    caches["default"].clear()
    yield
    caches["default"].clear()


@pytest.fixture(params=["database", "cache"])
def store(request, db):
    if request.param == "database":
        return DatabaseIntentStore()
    return CacheIntentStore()


# =============================================================================
# TestRegistrationIntent
# =============================================================================


@pytest.mark.unit
class TestRegistrationIntent:
    def test_email_is_normalized(self):
        assert _intent().email == "ada@example.com"

    def test_payload_survives_json_shape(self):
        intent = _intent()
        rebuilt = RegistrationIntent.from_payload(intent.reference, intent.to_payload())

        assert rebuilt.total == Decimal("95.00")
        assert rebuilt.line_items[0].date == datetime.date(2027, 6, 1)
        assert rebuilt.line_items[0].unit_price == Decimal("95.00")
        assert rebuilt.form_data["dietary"] == "vegan"
        assert rebuilt.payment_mode == "online"

    def test_new_references_are_unique_and_prefixed(self):
        refs = {new_intent_reference() for _ in range(50)}
        assert len(refs) == 50
        assert all(ref.startswith("int_") for ref in refs)

    def test_default_ttl_follows_config(self):
        with override_settings(DJANGO_REGISTRAR={"intent_ttl_minutes": 15}):
            assert default_intent_ttl() == datetime.timedelta(minutes=15)


# =============================================================================
# TestIntentStoreContract
# =============================================================================


@pytest.mark.unit
class TestIntentStoreContract:
    def test_put_then_get_returns_intent_with_timestamps(self, store):
        stored = store.put("int_abc", _intent(), datetime.timedelta(minutes=5))
        fetched = store.get("int_abc")

        assert fetched.reference == "int_abc"
        assert fetched.total == Decimal("95.00")
        assert fetched.line_items[0].name == "Main Conference"
        assert fetched.expires_at == stored.expires_at
        assert stored.expires_at - stored.created_at == datetime.timedelta(minutes=5)

    def test_get_missing_raises(self, store):
        with pytest.raises(IntentNotFound):
            store.get("int_nope")

    def test_put_overwrites(self, store):
        store.put("int_abc", _intent(total="95.00"), datetime.timedelta(minutes=5))
        store.put("int_abc", _intent(total="120.00"), datetime.timedelta(minutes=5))

        assert store.get("int_abc").total == Decimal("120.00")

    def test_delete_is_idempotent(self, store):
        store.put("int_abc", _intent(), datetime.timedelta(minutes=5))
        store.delete("int_abc")
        store.delete("int_abc")

        with pytest.raises(IntentNotFound):
            store.get("int_abc")

    def test_expired_intent_reads_as_absent(self, store):
        start = timezone.now()
        with patch(_NOW_PATH, return_value=start):
            store.put("int_abc", _intent(), datetime.timedelta(seconds=1))
        with patch(_NOW_PATH, return_value=start + datetime.timedelta(seconds=2)):
            with pytest.raises(IntentNotFound):
                store.get("int_abc")

    def test_intent_is_live_just_before_expiry(self, store):
        start = timezone.now()
        with patch(_NOW_PATH, return_value=start):
            store.put("int_abc", _intent(), datetime.timedelta(seconds=10))
        with patch(_NOW_PATH, return_value=start + datetime.timedelta(seconds=9)):
            assert store.get("int_abc").reference == "int_abc"


# =============================================================================
# TestDatabaseIntentStore
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestDatabaseIntentStore:
    def test_put_writes_one_row(self):
        store = DatabaseIntentStore()
        store.put("int_abc", _intent(), datetime.timedelta(minutes=5))
        store.put("int_abc", _intent(), datetime.timedelta(minutes=5))

        assert PendingRegistration.objects.filter(reference="int_abc").count() == 1

    def test_sweep_removes_only_expired_rows(self):
        store = DatabaseIntentStore()
        start = timezone.now()
        with patch(_NOW_PATH, return_value=start):
            store.put("int_old", _intent("int_old"), datetime.timedelta(seconds=1))
            store.put("int_live", _intent("int_live"), datetime.timedelta(hours=1))

        removed = store.sweep(start + datetime.timedelta(minutes=1))

        assert removed == 1
        assert list(PendingRegistration.objects.values_list("reference", flat=True)) == ["int_live"]

    def test_sweep_works_in_batches(self):
        store = DatabaseIntentStore()
        start = timezone.now()
        with patch(_NOW_PATH, return_value=start):
            for i in range(5):
                store.put(f"int_{i}", _intent(f"int_{i}"), datetime.timedelta(seconds=1))

        with override_settings(DJANGO_REGISTRAR={"sweep_batch_size": 2}):
            removed = store.sweep(start + datetime.timedelta(minutes=1))

        assert removed == 5
        assert not PendingRegistration.objects.exists()


# =============================================================================
# TestCacheIntentStore
# =============================================================================


@pytest.mark.unit
class TestCacheIntentStore:
    def test_uses_configured_alias(self):
        with override_settings(DJANGO_REGISTRAR={"intent_cache_alias": "default"}):
            assert CacheIntentStore().alias == "default"

    def test_expired_entry_is_removed_on_read(self):
        store = CacheIntentStore()
        start = timezone.now()
        with patch(_NOW_PATH, return_value=start):
            store.put("int_abc", _intent(), datetime.timedelta(seconds=1))
        with patch(_NOW_PATH, return_value=start + datetime.timedelta(seconds=2)):
            with pytest.raises(IntentNotFound):
                store.get("int_abc")

        assert caches["default"].get(f"{CacheIntentStore.key_prefix}int_abc") is None

    def test_sweep_reports_zero(self):
        assert CacheIntentStore().sweep() == 0


# =============================================================================
# TestGetIntentStore
# =============================================================================


@pytest.mark.unit
class TestGetIntentStore:
    def test_default_is_database_store(self):
        with override_settings(DJANGO_REGISTRAR={}):
            assert isinstance(get_intent_store(), DatabaseIntentStore)

    def test_dotted_path_selects_backend(self):
        path = "django_registrar.registration.intents.CacheIntentStore"
        with override_settings(DJANGO_REGISTRAR={"intent_store": path}):
            assert isinstance(get_intent_store(), CacheIntentStore)
