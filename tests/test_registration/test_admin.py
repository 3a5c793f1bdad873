"""Tests for the payment record admin action."""

from decimal import Decimal

import pytest
from django.contrib.admin.sites import AdminSite
from django.contrib.auth import get_user_model
from django.contrib.messages.storage.fallback import FallbackStorage
from django.test import RequestFactory

from django_registrar.conference.models import Conference
from django_registrar.registration.admin import PaymentRecordAdmin
from django_registrar.registration.models import Attendee, PaymentRecord, Registration

User = get_user_model()


@pytest.fixture
def conference(db):
    return Conference.objects.create(
        name="TestCon", slug="testcon-admin", start_date="2027-06-01", end_date="2027-06-03"
    )


@pytest.fixture
def admin_user(db):
    return User.objects.create_superuser(username="admin", password="x", email="admin@example.com")


def _payment(conference, email, status=PaymentRecord.Status.PENDING):
    attendee = Attendee.objects.create(conference=conference, email=email, first_name="A", last_name="B")
    registration = Registration.objects.create(
        conference=conference, attendee=attendee, reference=f"REG-{email[:4].upper()}0000", total=Decimal("20.00")
    )
    return PaymentRecord.objects.create(
        registration=registration,
        amount=Decimal("20.00"),
        mode=PaymentRecord.Mode.BANK_TRANSFER,
        status=status,
    )


def _request(user):
    request = RequestFactory().post("/admin/")
    request.user = user
    request.session = {}
    request._messages = FallbackStorage(request)
    return request


@pytest.mark.django_db
def test_confirm_selected_payments(conference, admin_user):
    pending = _payment(conference, "aaaa@example.com")
    failed = _payment(conference, "bbbb@example.com", status=PaymentRecord.Status.FAILED)
    model_admin = PaymentRecordAdmin(PaymentRecord, AdminSite())
    request = _request(admin_user)

    model_admin.confirm_selected_payments(request, PaymentRecord.objects.filter(pk__in=[pending.pk, failed.pk]))

    pending.refresh_from_db()
    failed.refresh_from_db()
    assert pending.status == PaymentRecord.Status.CONFIRMED
    assert pending.confirmed_by == PaymentRecord.Actor.OPERATOR
    assert pending.confirmed_by_user == admin_user
    assert failed.status == PaymentRecord.Status.FAILED

    texts = [str(message) for message in request._messages]
    assert "Confirmed 1 payment(s)." in texts
    assert any("Skipped 1" in text for text in texts)


@pytest.mark.django_db
def test_status_is_read_only(conference, admin_user):
    model_admin = PaymentRecordAdmin(PaymentRecord, AdminSite())
    assert "status" in model_admin.get_readonly_fields(_request(admin_user))
