"""Stripe webhook handling for the registration app.

Provides a registry-based dispatch system for Stripe webhook events. Each
event kind (e.g. ``checkout.session.completed``) maps to a handler class.
Checkout session handlers are thin callers of the confirmation reconciler;
the reconciler re-reads the session from Stripe, so the webhook body only
tells us *which* session to look at.

The ``stripe_webhook`` view parses (and, when a webhook secret is
configured, verifies) the event per conference, persists it as a
``GatewayEvent``, skips events that were already processed, and delegates
to the registered handler.

Usage in URL configuration::

    from django_registrar.registration.webhooks import stripe_webhook

    urlpatterns = [
        path("<slug:conference_slug>/registration/webhooks/stripe/", stripe_webhook),
    ]
"""

import logging
import traceback

from django.db import IntegrityError
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from django_registrar.conference.models import Conference
from django_registrar.registration.errors import GatewayUnavailable, MalformedPayload, SessionNotFound
from django_registrar.registration.intents import get_intent_store
from django_registrar.registration.models import EventProcessingException, GatewayEvent, PaymentRecord
from django_registrar.registration.services.reconciler import ConfirmationReconciler, ReconciliationResult
from django_registrar.registration.stripe_client import CheckoutGateway, WebhookEvent

logger = logging.getLogger(__name__)

# Failures that are answered with a retryable or client status but are not
# recorded as processing exceptions.
_UNCAPTURED_ERRORS = (GatewayUnavailable, SessionNotFound)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class WebhookRegistry:
    """Registry mapping Stripe event kinds to handler classes.

    Handlers are registered at module load time and looked up by the webhook
    view when an event arrives.
    """

    def __init__(self) -> None:
        self._registry: dict[str, type["Webhook"]] = {}

    def register(self, kind: str, handler_class: type["Webhook"]) -> None:
        """Register a handler class for a Stripe event kind.

        Args:
            kind: The Stripe event type string (e.g. ``"checkout.session.completed"``).
            handler_class: A ``Webhook`` subclass that handles this event kind.
        """
        self._registry[kind] = handler_class

    def get(self, kind: str) -> type["Webhook"] | None:
        """Return the handler class for a given event kind, or ``None``."""
        return self._registry.get(kind)

    def keys(self) -> list[str]:
        return list(self._registry.keys())


registry = WebhookRegistry()


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------


class Webhook:
    """Base class for Stripe webhook event handlers.

    Subclasses set ``name`` to the Stripe event kind they handle and
    implement ``process_webhook()``. The base ``process()`` method wraps
    execution in the processed-flag check and exception capture.

    Attributes:
        name: The Stripe event kind this handler processes.
        event: The persisted ``GatewayEvent`` being handled.
        parsed: The parsed webhook delivery.
        reconciler: Reconciler bound to the event's conference.
    """

    name: str = ""

    def __init__(self, event: GatewayEvent, parsed: WebhookEvent, reconciler: ConfirmationReconciler) -> None:
        self.event = event
        self.parsed = parsed
        self.reconciler = reconciler

    def process(self) -> None:
        """Run the handler with idempotency and error capture.

        Skips events that have already been processed. On success, marks the
        event as processed. Unexpected failures are captured to
        ``EventProcessingException`` and re-raised; gateway outages are
        re-raised without capture so the delivery is retried.
        """
        if self.event.processed:
            logger.info("Event %s already processed, skipping", self.event.event_id)
            return

        try:
            self.process_webhook()
        except _UNCAPTURED_ERRORS:
            raise
        except Exception:
            self.log_exception()
            raise
        self.event.processed = True
        self.event.save(update_fields=["processed"])

    def process_webhook(self) -> None:
        """Implement event-specific processing logic.

        Raises:
            NotImplementedError: Subclasses must override this method.
        """
        raise NotImplementedError

    def log_exception(self) -> None:
        """Capture the current exception to ``EventProcessingException``."""
        tb = traceback.format_exc()
        logger.exception("Error processing webhook %s (event %s)", self.name, self.event.event_id)
        EventProcessingException.objects.create(
            event=self.event,
            data=str(self.event.payload),
            message=tb.strip().splitlines()[-1][:500] if tb.strip() else "",
            traceback=tb,
        )


# ---------------------------------------------------------------------------
# Concrete handlers
# ---------------------------------------------------------------------------


class CheckoutSessionWebhook(Webhook):
    """Reconciles the checkout session named by a ``checkout.session.*`` event.

    The event kind only decides what gets logged; the outcome is always
    taken from the gateway's current view of the session.
    """

    result: ReconciliationResult | None = None

    def process_webhook(self) -> None:
        session_id = self.parsed.session_id
        if not session_id:
            logger.warning("Event %s (%s) carries no checkout session id", self.event.event_id, self.name)
            return
        self.result = self.reconciler.reconcile(session_id, PaymentRecord.Actor.GATEWAY_WEBHOOK)
        logger.info(
            "Webhook %s for session %s reconciled: %s",
            self.name,
            session_id,
            self.result.outcome.value,
        )


class CheckoutSessionCompletedWebhook(CheckoutSessionWebhook):
    name = "checkout.session.completed"


class CheckoutSessionAsyncSucceededWebhook(CheckoutSessionWebhook):
    name = "checkout.session.async_payment_succeeded"


class CheckoutSessionAsyncFailedWebhook(CheckoutSessionWebhook):
    name = "checkout.session.async_payment_failed"


class CheckoutSessionExpiredWebhook(CheckoutSessionWebhook):
    name = "checkout.session.expired"


# ---------------------------------------------------------------------------
# Handler registration
# ---------------------------------------------------------------------------

for _handler in (
    CheckoutSessionCompletedWebhook,
    CheckoutSessionAsyncSucceededWebhook,
    CheckoutSessionAsyncFailedWebhook,
    CheckoutSessionExpiredWebhook,
):
    registry.register(_handler.name, _handler)


# ---------------------------------------------------------------------------
# Webhook endpoint view
# ---------------------------------------------------------------------------


def _record_event(parsed: WebhookEvent, conference: Conference) -> GatewayEvent:
    defaults = {
        "kind": parsed.event_type,
        "conference": conference,
        "livemode": parsed.livemode,
        "session_id": parsed.session_id or "",
        "payload": parsed.payload,
    }
    try:
        event, _created = GatewayEvent.objects.get_or_create(event_id=parsed.event_id, defaults=defaults)
    except IntegrityError:
        event = GatewayEvent.objects.get(event_id=parsed.event_id)
    return event


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest, conference_slug: str) -> HttpResponse:
    """Receive and process Stripe webhook events for a specific conference.

    Responses:

    * 404: unknown or inactive conference, or no Stripe key configured.
    * 400: unparseable body, failed signature check, or a session Stripe
      does not know.
    * 200: handled (whatever the reconciliation outcome), duplicate, or no
      handler for the kind.
    * 503: Stripe could not be reached; Stripe retries the delivery.
    * 500: unexpected handler error, captured to ``EventProcessingException``;
      Stripe retries the delivery.

    Args:
        request: The incoming HTTP request from Stripe.
        conference_slug: URL slug identifying which conference this webhook
            is for.
    """
    try:
        conference = Conference.objects.get(slug=conference_slug, is_active=True)
    except Conference.DoesNotExist:
        logger.warning("Webhook received for unknown conference slug: %s", conference_slug)
        return HttpResponse(status=404)

    try:
        gateway = CheckoutGateway(conference)
    except ValueError:
        logger.exception("Webhook received for conference '%s' without Stripe keys", conference_slug)
        return HttpResponse(status=404)

    try:
        parsed = gateway.parse_webhook_event(request.body, request.META.get("HTTP_STRIPE_SIGNATURE", ""))
    except MalformedPayload as exc:
        logger.warning("Invalid Stripe webhook for conference '%s': %s", conference_slug, exc)
        return HttpResponse(status=400)

    event = _record_event(parsed, conference)
    if event.processed:
        logger.info("Duplicate Stripe event %s, returning 200", parsed.event_id)
        return HttpResponse(status=200)

    handler_class = registry.get(parsed.event_type)
    if handler_class is None:
        logger.info("No handler registered for event kind '%s'", parsed.event_type)
        return HttpResponse(status=200)

    handler = handler_class(event, parsed, ConfirmationReconciler(gateway, get_intent_store()))
    try:
        handler.process()
    except GatewayUnavailable:
        logger.warning("Stripe unavailable while handling event %s; asking for redelivery", parsed.event_id)
        return HttpResponse(status=503)
    except SessionNotFound:
        logger.warning("Event %s names unknown checkout session %s", parsed.event_id, parsed.session_id)
        return HttpResponse(status=400)
    except Exception:
        logger.exception("Error processing Stripe event %s (kind=%s)", parsed.event_id, parsed.event_type)
        return HttpResponse(status=500)

    return HttpResponse(status=200)
