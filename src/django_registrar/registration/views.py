"""Views for the registration app.

JSON endpoints scoped to a conference via the ``conference_slug`` URL kwarg:
registration submission, the checkout status poll, operator confirmation of
offline payments, and the bearer-token protected intent storage API. The
Stripe webhook endpoint lives in :mod:`django_registrar.registration.webhooks`.
"""

import datetime
import json
import logging
import secrets
from decimal import Decimal, InvalidOperation
from typing import Any

from django.contrib.auth.mixins import LoginRequiredMixin
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import Http404, HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.urls import reverse
from django.utils.decorators import method_decorator
from django.utils.http import url_has_allowed_host_and_scheme
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from django_registrar.conference.models import Conference
from django_registrar.registration.errors import (
    GatewayRejected,
    GatewayUnavailable,
    IntentNotFound,
    PaymentAlreadyConfirmed,
    SessionNotFound,
)
from django_registrar.registration.forms import ManualConfirmForm, RegistrationSubmissionForm
from django_registrar.registration.intents import (
    IntentLineItem,
    RegistrationIntent,
    default_intent_ttl,
    get_intent_store,
)
from django_registrar.registration.models import PaymentRecord, Registration
from django_registrar.registration.services.manual import confirm_manually
from django_registrar.registration.services.reconciler import ConfirmationReconciler
from django_registrar.registration.services.submission import submit_registration
from django_registrar.registration.stripe_client import CheckoutGateway
from django_registrar.settings import get_config

logger = logging.getLogger(__name__)

PAYMENTS_DESK_GROUP_NAME = "Registrar: Payments Desk"

_SUBMISSION_FIELDS = frozenset(RegistrationSubmissionForm.base_fields)


def _json_body(request: HttpRequest) -> dict[str, Any]:
    """Decode a JSON object request body.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    try:
        data = json.loads(request.body or b"{}")
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _error(message: str, status: int, **extra: object) -> JsonResponse:
    return JsonResponse({"error": message, **extra}, status=status)


def serialize_payment(payment: PaymentRecord) -> dict[str, Any]:
    """Return the JSON representation of a payment record."""
    return {
        "id": payment.pk,
        "registration_id": payment.registration_id,
        "amount": str(payment.amount),
        "mode": payment.mode,
        "status": payment.status,
        "transaction_reference": payment.transaction_reference,
        "confirmed_at": payment.confirmed_at.isoformat() if payment.confirmed_at else None,
        "confirmed_by": payment.confirmed_by,
        "notes": payment.notes,
    }


class ConferenceMixin:
    """Mixin that resolves the conference from the ``conference_slug`` URL kwarg.

    Stores the conference on ``self.conference``. Returns a 404 if no active
    conference matches the slug.
    """

    conference: Conference

    def dispatch(self, request: HttpRequest, *args: str, **kwargs: str) -> HttpResponse:
        self.conference = get_object_or_404(Conference, slug=kwargs.get("conference_slug", ""), is_active=True)
        return super().dispatch(request, *args, **kwargs)  # type: ignore[misc]


class PaymentsDeskPermissionMixin(LoginRequiredMixin):
    """Permission mixin for operator payment views.

    Resolves the conference from the ``conference_slug`` URL kwarg and
    checks that the authenticated user satisfies at least one of:

    * is a superuser,
    * holds the ``registrar_registration.change_paymentrecord`` permission, or
    * belongs to the "Registrar: Payments Desk" group.

    Raises:
        PermissionDenied: If the user fails all three checks.
    """

    conference: Conference

    def dispatch(self, request: HttpRequest, *args: str, **kwargs: str) -> HttpResponse:
        if not request.user.is_authenticated:
            return self.handle_no_permission()  # type: ignore[return-value]

        self.conference = get_object_or_404(Conference, slug=kwargs.get("conference_slug", ""))

        user = request.user
        allowed = (
            user.is_superuser
            or user.has_perm("registrar_registration.change_paymentrecord")
            or user.groups.filter(name=PAYMENTS_DESK_GROUP_NAME).exists()
        )
        if not allowed:
            raise PermissionDenied

        return super().dispatch(request, *args, **kwargs)


@method_decorator(csrf_exempt, name="dispatch")
class SubmitRegistrationView(ConferenceMixin, View):
    """Accept a registration submission as JSON.

    Responds 201 with the registration when it is created immediately (zero
    total or offline payment), 200 with ``session_id`` and ``redirect_url``
    when the registrant must pay online, 400 on validation errors, and 503
    when the gateway cannot be reached. A request Stripe refuses (for
    example a revoked key) answers 502.
    """

    def post(self, request: HttpRequest, **kwargs: str) -> JsonResponse:
        try:
            data = _json_body(request)
        except ValidationError as exc:
            return _error(exc.messages[0], 400)

        form = RegistrationSubmissionForm(data, conference=self.conference)
        if not form.is_valid():
            return _error("Invalid submission.", 400, errors=form.errors.get_json_data())

        profile = {key: value for key, value in data.items() if key not in _SUBMISSION_FIELDS}
        success_url, cancel_url = self._redirect_urls(form.cleaned_data)
        try:
            result = submit_registration(
                self.conference,
                form.cleaned_data,
                store=get_intent_store(),
                success_url=success_url,
                cancel_url=cancel_url,
                profile=profile,
            )
        except ValidationError as exc:
            return _error(exc.messages[0], 400)
        except GatewayUnavailable:
            return _error("The payment provider is unavailable. Please try again.", 503)
        except GatewayRejected:
            return _error("The payment provider rejected the request. Please contact the organizers.", 502)

        body = {
            "total": str(result.total),
            "payment_mode": result.payment_mode,
        }
        if result.requires_payment:
            body.update(session_id=result.session_id, redirect_url=result.redirect_url)
            return JsonResponse(body, status=200)
        body.update(
            registration_id=result.registration_id,
            registration_reference=result.registration_reference,
        )
        return JsonResponse(body, status=201)

    def _redirect_urls(self, cleaned_data: dict[str, Any]) -> tuple[str, str]:
        """Return the gateway redirect targets, falling back to the poll endpoint."""
        verify_url = self.request.build_absolute_uri(
            reverse("registration:verify", kwargs={"conference_slug": self.conference.slug})
        )
        default_success = f"{verify_url}?session_id={{CHECKOUT_SESSION_ID}}"
        default_cancel = self.request.build_absolute_uri("/")

        def allowed(url: str) -> bool:
            return bool(url) and url_has_allowed_host_and_scheme(
                url,
                allowed_hosts={self.request.get_host()},
                require_https=self.request.is_secure(),
            )

        success = cleaned_data.get("success_url") or ""
        cancel = cleaned_data.get("cancel_url") or ""
        return (success if allowed(success) else default_success, cancel if allowed(cancel) else default_cancel)


class VerifyCheckoutView(ConferenceMixin, View):
    """Client status poll for a checkout session.

    Runs the same reconciliation as the webhook, so a registrant returning
    from checkout sees their registration even if the webhook is late.
    """

    def get(self, request: HttpRequest, **kwargs: str) -> JsonResponse:
        session_id = request.GET.get("session_id", "").strip()
        if not session_id:
            return _error("Missing session_id.", 400)

        try:
            gateway = CheckoutGateway(self.conference)
        except ValueError:
            logger.exception("Checkout poll for conference '%s' without Stripe keys", self.conference.slug)
            return _error("Payments are not configured for this conference.", 503)

        reconciler = ConfirmationReconciler(gateway, get_intent_store())
        try:
            result = reconciler.reconcile(session_id, PaymentRecord.Actor.CLIENT_POLL)
        except SessionNotFound:
            return _error("Unknown checkout session.", 404)
        except GatewayUnavailable:
            return _error("The payment provider is unavailable. Please try again.", 503)
        except GatewayRejected:
            return _error("The payment provider rejected the request. Please contact the organizers.", 502)

        reference = ""
        if result.registration_id is not None:
            reference = (
                Registration.objects.filter(pk=result.registration_id).values_list("reference", flat=True).first()
                or ""
            )
        return JsonResponse(
            {
                "state": result.ui_state,
                "registration_id": result.registration_id,
                "registration_reference": reference,
            }
        )


class ManualConfirmView(PaymentsDeskPermissionMixin, View):
    """Operator confirmation of an offline (bank transfer or walk-in) payment."""

    def post(self, request: HttpRequest, conference_slug: str, payment_id: int) -> JsonResponse:
        payment = get_object_or_404(PaymentRecord, pk=payment_id, registration__conference=self.conference)
        form = ManualConfirmForm(request.POST)
        if not form.is_valid():
            return _error("Invalid input.", 400, errors=form.errors.get_json_data())

        try:
            payment = confirm_manually(
                payment.pk,
                request.user,
                note=form.cleaned_data["note"],
                transaction_reference=form.cleaned_data["transaction_reference"],
            )
        except PaymentAlreadyConfirmed as exc:
            return JsonResponse({**serialize_payment(exc.payment), "already_confirmed": True})
        except ValidationError as exc:
            return _error(exc.messages[0], 400)

        return JsonResponse({**serialize_payment(payment), "already_confirmed": False})


@method_decorator(csrf_exempt, name="dispatch")
class IntentDetailView(ConferenceMixin, View):
    """Bearer-token protected storage API for registration intents.

    ``PUT`` stores (or replaces) an intent, ``GET`` reads it and ``DELETE``
    removes it. Disabled with a 404 unless
    ``DJANGO_REGISTRAR["intent_api_token"]`` is set.
    """

    http_method_names = ["get", "put", "delete"]

    def dispatch(self, request: HttpRequest, *args: str, **kwargs: str) -> HttpResponse:
        token = get_config().intent_api_token
        if not token:
            raise Http404
        header = request.META.get("HTTP_AUTHORIZATION", "")
        scheme, _, supplied = header.partition(" ")
        if scheme.lower() != "bearer" or not secrets.compare_digest(supplied.strip(), token):
            return _error("Invalid or missing bearer token.", 401)
        return super().dispatch(request, *args, **kwargs)

    def get(self, request: HttpRequest, conference_slug: str, reference: str) -> JsonResponse:
        try:
            intent = get_intent_store().get(reference)
        except IntentNotFound:
            return _error("Intent not found.", 404)
        if intent.conference_id != self.conference.pk:
            return _error("Intent not found.", 404)
        return JsonResponse(_serialize_intent(intent))

    def put(self, request: HttpRequest, conference_slug: str, reference: str) -> JsonResponse:
        try:
            data = _json_body(request)
            intent = RegistrationIntent(
                reference=reference,
                conference_id=self.conference.pk,
                form_data=dict(data.get("form_data") or {}),
                line_items=[IntentLineItem.from_payload(item) for item in data.get("line_items") or []],
                total=Decimal(str(data.get("total", "0"))),
                payment_mode=str(data.get("payment_mode") or PaymentRecord.Mode.ONLINE),
                metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
            )
            ttl = default_intent_ttl()
            if data.get("ttl_seconds") is not None:
                ttl = datetime.timedelta(seconds=int(data["ttl_seconds"]))
        except ValidationError as exc:
            return _error(exc.messages[0], 400)
        except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation):
            return _error("Malformed intent.", 400)
        if ttl.total_seconds() <= 0:
            return _error("ttl_seconds must be positive.", 400)

        stored = get_intent_store().put(reference, intent, ttl)
        return JsonResponse(_serialize_intent(stored), status=200)

    def delete(self, request: HttpRequest, conference_slug: str, reference: str) -> HttpResponse:
        get_intent_store().delete(reference)
        return HttpResponse(status=204)


def _serialize_intent(intent: RegistrationIntent) -> dict[str, Any]:
    return {
        "reference": intent.reference,
        **intent.to_payload(),
        "created_at": intent.created_at.isoformat() if intent.created_at else None,
        "expires_at": intent.expires_at.isoformat() if intent.expires_at else None,
    }
