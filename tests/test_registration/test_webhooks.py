"""Tests for Stripe webhook handling in django_registrar.registration.webhooks."""

import json
from unittest.mock import MagicMock, patch

import pytest
from django.test import RequestFactory

from django_registrar.conference.models import Conference
from django_registrar.registration.errors import GatewayUnavailable, MalformedPayload, SessionNotFound
from django_registrar.registration.models import EventProcessingException, GatewayEvent, PaymentRecord
from django_registrar.registration.services.reconciler import ConfirmationReconciler, Outcome, ReconciliationResult
from django_registrar.registration.stripe_client import WebhookEvent, webhook_event_from_dict
from django_registrar.registration.webhooks import (
    CheckoutSessionCompletedWebhook,
    Webhook,
    WebhookRegistry,
    registry,
    stripe_webhook,
)

_PARSE = "django_registrar.registration.webhooks.CheckoutGateway.parse_webhook_event"
_RECONCILE = "django_registrar.registration.webhooks.ConfirmationReconciler.reconcile"


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def conference(db):
    return Conference.objects.create(
        name="TestCon",
        slug="testcon-wh",
        start_date="2027-06-01",
        end_date="2027-06-03",
        timezone="UTC",
        is_active=True,
        stripe_secret_key="sk_test_abc123",
        stripe_webhook_secret="whsec_test_secret",
    )


@pytest.fixture
def request_factory():
    return RequestFactory()


def _parsed(kind="checkout.session.completed", event_id="evt_test_001", session_id="cs_test_1"):
    obj = {"object": "checkout.session", "id": session_id} if session_id else {"object": "customer", "id": "cus_1"}
    return webhook_event_from_dict({"id": event_id, "type": kind, "data": {"object": obj}})


def _post(request_factory, slug="testcon-wh"):
    return request_factory.post(
        f"/{slug}/registration/webhooks/stripe/",
        data=b"{}",
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
    )


def _gateway_event(parsed: WebhookEvent):
    return GatewayEvent.objects.create(event_id=parsed.event_id, kind=parsed.event_type, payload=parsed.payload)


# =============================================================================
# TestWebhookRegistry
# =============================================================================


@pytest.mark.unit
class TestWebhookRegistry:
    def test_register_and_get(self):
        reg = WebhookRegistry()

        class FakeHandler(Webhook):
            name = "fake.event"

        reg.register("fake.event", FakeHandler)
        assert reg.get("fake.event") is FakeHandler
        assert reg.get("other.event") is None

    def test_module_registry_has_expected_handlers(self):
        assert set(registry.keys()) == {
            "checkout.session.completed",
            "checkout.session.async_payment_succeeded",
            "checkout.session.async_payment_failed",
            "checkout.session.expired",
        }


# =============================================================================
# TestWebhookBaseProcess
# =============================================================================


@pytest.mark.django_db
class TestWebhookBaseProcess:
    def test_already_processed_event_is_skipped(self):
        parsed = _parsed()
        event = _gateway_event(parsed)
        event.processed = True
        event.save(update_fields=["processed"])
        reconciler = MagicMock(spec=ConfirmationReconciler)

        CheckoutSessionCompletedWebhook(event, parsed, reconciler).process()

        reconciler.reconcile.assert_not_called()

    def test_success_marks_processed(self):
        parsed = _parsed()
        event = _gateway_event(parsed)
        reconciler = MagicMock(spec=ConfirmationReconciler)
        reconciler.reconcile.return_value = ReconciliationResult(Outcome.NOT_YET_PAID, "cs_test_1")

        handler = CheckoutSessionCompletedWebhook(event, parsed, reconciler)
        handler.process()

        event.refresh_from_db()
        assert event.processed is True
        assert handler.result.outcome is Outcome.NOT_YET_PAID
        reconciler.reconcile.assert_called_once_with("cs_test_1", PaymentRecord.Actor.GATEWAY_WEBHOOK)

    def test_unexpected_error_is_captured(self):
        parsed = _parsed()
        event = _gateway_event(parsed)
        reconciler = MagicMock(spec=ConfirmationReconciler)
        reconciler.reconcile.side_effect = RuntimeError("deliberate test failure")

        with pytest.raises(RuntimeError):
            CheckoutSessionCompletedWebhook(event, parsed, reconciler).process()

        captured = EventProcessingException.objects.get(event=event)
        assert "deliberate test failure" in captured.traceback
        assert len(captured.message) <= 500
        event.refresh_from_db()
        assert event.processed is False

    def test_gateway_outage_is_not_captured(self):
        parsed = _parsed()
        event = _gateway_event(parsed)
        reconciler = MagicMock(spec=ConfirmationReconciler)
        reconciler.reconcile.side_effect = GatewayUnavailable("timeout")

        with pytest.raises(GatewayUnavailable):
            CheckoutSessionCompletedWebhook(event, parsed, reconciler).process()

        assert not EventProcessingException.objects.exists()

    def test_base_process_webhook_raises_not_implemented(self):
        parsed = _parsed()
        handler = Webhook(_gateway_event(parsed), parsed, MagicMock())
        with pytest.raises(NotImplementedError):
            handler.process_webhook()


# =============================================================================
# TestStripeWebhookView
# =============================================================================


@pytest.mark.django_db
class TestStripeWebhookView:
    def test_unknown_conference_is_404(self, request_factory, db):
        response = stripe_webhook(_post(request_factory, "nope"), conference_slug="nope")
        assert response.status_code == 404

    def test_inactive_conference_is_404(self, request_factory, conference):
        conference.is_active = False
        conference.save()
        response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 404

    def test_malformed_payload_is_400(self, request_factory, conference):
        with patch(_PARSE, side_effect=MalformedPayload("bad signature")):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 400
        assert not GatewayEvent.objects.exists()

    def test_handled_event_is_200_and_recorded(self, request_factory, conference):
        result = ReconciliationResult(Outcome.NEWLY_CONFIRMED, "cs_test_1", 42)
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, return_value=result) as reconcile:
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")

        assert response.status_code == 200
        reconcile.assert_called_once_with("cs_test_1", PaymentRecord.Actor.GATEWAY_WEBHOOK)
        event = GatewayEvent.objects.get(event_id="evt_test_001")
        assert event.processed is True
        assert event.conference == conference
        assert event.session_id == "cs_test_1"

    @pytest.mark.parametrize(
        "outcome",
        [Outcome.NOT_YET_PAID, Outcome.PAYMENT_FAILED, Outcome.ALREADY_CONFIRMED, Outcome.INTENT_MISSING],
    )
    def test_expected_outcomes_are_200(self, request_factory, conference, outcome):
        with patch(_PARSE, return_value=_parsed()), patch(
            _RECONCILE, return_value=ReconciliationResult(outcome, "cs_test_1")
        ):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 200

    def test_duplicate_delivery_skips_handler(self, request_factory, conference):
        result = ReconciliationResult(Outcome.NEWLY_CONFIRMED, "cs_test_1", 42)
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, return_value=result) as reconcile:
            first = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
            second = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")

        assert (first.status_code, second.status_code) == (200, 200)
        assert reconcile.call_count == 1
        assert GatewayEvent.objects.count() == 1

    def test_gateway_outage_is_503_and_retry_reprocesses(self, request_factory, conference):
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, side_effect=GatewayUnavailable("down")):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 503

        result = ReconciliationResult(Outcome.NEWLY_CONFIRMED, "cs_test_1", 42)
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, return_value=result) as reconcile:
            retry = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert retry.status_code == 200
        assert reconcile.call_count == 1

    def test_unknown_session_is_400(self, request_factory, conference):
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, side_effect=SessionNotFound("cs_test_1")):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 400

    def test_unexpected_error_is_500_and_captured(self, request_factory, conference):
        with patch(_PARSE, return_value=_parsed()), patch(_RECONCILE, side_effect=RuntimeError("kaboom")):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")

        assert response.status_code == 500
        assert EventProcessingException.objects.filter(event__event_id="evt_test_001").count() == 1

    def test_unregistered_kind_is_acknowledged(self, request_factory, conference):
        with patch(_PARSE, return_value=_parsed(kind="customer.created", session_id=None)):
            response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 200
        assert GatewayEvent.objects.filter(kind="customer.created").exists()

    def test_conference_without_keys_is_404(self, request_factory, conference):
        conference.stripe_secret_key = None
        conference.save()
        response = stripe_webhook(_post(request_factory), conference_slug="testcon-wh")
        assert response.status_code == 404

    def test_get_not_allowed(self, request_factory, conference):
        response = stripe_webhook(request_factory.get("/"), conference_slug="testcon-wh")
        assert response.status_code == 405

    def test_end_to_end_with_unverified_body(self, request_factory, conference):
        payload = json.dumps(
            {
                "id": "evt_e2e",
                "type": "checkout.session.completed",
                "data": {"object": {"object": "checkout.session", "id": "cs_e2e"}},
            }
        )
        conference.stripe_webhook_secret = None
        conference.save()
        request = request_factory.post(
            "/testcon-wh/registration/webhooks/stripe/", data=payload, content_type="application/json"
        )
        result = ReconciliationResult(Outcome.NOT_YET_PAID, "cs_e2e")
        with patch(_RECONCILE, return_value=result) as reconcile:
            response = stripe_webhook(request, conference_slug="testcon-wh")

        assert response.status_code == 200
        reconcile.assert_called_once_with("cs_e2e", PaymentRecord.Actor.GATEWAY_WEBHOOK)
