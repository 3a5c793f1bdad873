"""Tests for registration submission in django_registrar.registration.services.submission."""

import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.core.exceptions import ValidationError

from django_registrar.conference.models import Conference, EventOffering
from django_registrar.registration.errors import GatewayUnavailable, IntentNotFound
from django_registrar.registration.intents import DatabaseIntentStore
from django_registrar.registration.models import Attendee, PaymentRecord, PendingRegistration, Registration
from django_registrar.registration.services.submission import price_selection, submit_registration
from django_registrar.registration.stripe_client import INTENT_REFERENCE_KEY, CheckoutGateway


@pytest.fixture
def conference(db):
    return Conference.objects.create(
        name="Maritime Week",
        slug="maritime-week",
        start_date="2027-06-01",
        end_date="2027-06-03",
        bundle_category=EventOffering.Category.CONFERENCE,
        bundle_discount=Decimal("20.00"),
        stripe_secret_key="sk_test_abc123",
    )


@pytest.fixture
def offerings(conference):
    def make(slug, price, category=EventOffering.Category.CONFERENCE, order=0):
        return EventOffering.objects.create(
            conference=conference,
            name=slug.replace("-", " ").title(),
            slug=slug,
            date=datetime.date(2027, 6, 1),
            price=Decimal(price),
            category=category,
            order=order,
        )

    return {
        "day-one": make("day-one", "60.00", order=1),
        "day-two": make("day-two", "60.00", order=2),
        "workshop": make("workshop", "35.00", EventOffering.Category.WORKSHOP, order=3),
        "expo": make("expo", "0.00", EventOffering.Category.EXHIBITION, order=4),
    }


@pytest.fixture
def store(db):
    return DatabaseIntentStore()


@pytest.fixture
def gateway():
    gateway = MagicMock(spec=CheckoutGateway)
    gateway.currency = "USD"
    gateway.create_session.return_value = ("cs_test_sub", "https://checkout.stripe.test/cs_test_sub")
    return gateway


def _data(*selected, email="ada@example.com", mode="online"):
    return {
        "email": email,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "phone": "",
        "organization": "Analytical Engines",
        "offerings": list(selected),
        "payment_mode": mode,
    }


def _submit(conference, data, store, gateway):
    return submit_registration(
        conference,
        data,
        store=store,
        success_url="https://example.com/ok?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://example.com/cancel",
        profile={"vessel": "HMS Beagle"},
        gateway_factory=lambda _conference: gateway,
    )


@pytest.mark.django_db
class TestPriceSelection:
    def test_sums_selected_offerings(self, conference, offerings):
        line_items, total = price_selection(conference, [offerings["workshop"], offerings["day-one"]])

        assert [item.name for item in line_items] == ["Day One", "Workshop"]
        assert total == Decimal("95.00")

    def test_bundle_discount_when_whole_category_selected(self, conference, offerings):
        _items, total = price_selection(conference, [offerings["day-one"], offerings["day-two"]])
        assert total == Decimal("100.00")

    def test_inactive_offerings_do_not_block_bundle(self, conference, offerings):
        EventOffering.objects.create(
            conference=conference, name="Old Day", slug="old-day", price=Decimal("10"), is_active=False
        )
        _items, total = price_selection(conference, [offerings["day-one"], offerings["day-two"]])
        assert total == Decimal("100.00")

    def test_total_never_negative(self, conference, offerings):
        conference.bundle_discount = Decimal("500.00")
        _items, total = price_selection(conference, [offerings["day-one"], offerings["day-two"]])
        assert total == Decimal("0.00")


@pytest.mark.django_db
class TestSubmitRegistration:
    def test_online_submission_parks_intent_and_opens_checkout(self, conference, offerings, store, gateway):
        result = _submit(conference, _data(offerings["day-one"], offerings["workshop"]), store, gateway)

        assert result.requires_payment
        assert result.session_id == "cs_test_sub"
        assert result.redirect_url.startswith("https://checkout.stripe.test/")
        intent = store.get(result.intent_reference)
        assert intent.total == Decimal("95.00")
        assert intent.form_data["vessel"] == "HMS Beagle"
        assert intent.expires_at is not None

        kwargs = gateway.create_session.call_args.kwargs
        assert kwargs["amount"] == 9500
        assert kwargs["currency"] == "USD"
        assert kwargs["metadata"][INTENT_REFERENCE_KEY] == result.intent_reference
        assert not Registration.objects.exists()
        assert not PaymentRecord.objects.exists()

    def test_zero_total_registers_immediately(self, conference, offerings, store, gateway):
        result = _submit(conference, _data(offerings["expo"]), store, gateway)

        assert not result.requires_payment
        registration = Registration.objects.get(pk=result.registration_id)
        assert registration.reference == result.registration_reference
        assert not registration.payments.exists()
        gateway.create_session.assert_not_called()

    def test_offline_submission_creates_pending_payment(self, conference, offerings, store, gateway):
        result = _submit(
            conference, _data(offerings["day-one"], mode=PaymentRecord.Mode.BANK_TRANSFER), store, gateway
        )

        payment = PaymentRecord.objects.get(registration_id=result.registration_id)
        assert payment.status == PaymentRecord.Status.PENDING
        assert payment.mode == PaymentRecord.Mode.BANK_TRANSFER
        assert payment.amount == Decimal("60.00")
        gateway.create_session.assert_not_called()

    def test_already_registered_email_is_rejected(self, conference, offerings, store, gateway):
        _submit(conference, _data(offerings["expo"]), store, gateway)

        with pytest.raises(ValidationError, match="already registered"):
            _submit(conference, _data(offerings["day-one"]), store, gateway)
        assert Attendee.objects.count() == 1

    def test_empty_selection_is_rejected(self, conference, offerings, store, gateway):
        with pytest.raises(ValidationError, match="at least one"):
            _submit(conference, _data(), store, gateway)

    def test_gateway_outage_discards_intent(self, conference, offerings, store, gateway):
        gateway.create_session.side_effect = GatewayUnavailable("timeout")

        with pytest.raises(GatewayUnavailable):
            _submit(conference, _data(offerings["day-one"]), store, gateway)

        assert not PendingRegistration.objects.exists()
        with pytest.raises(IntentNotFound):
            store.get("anything")
