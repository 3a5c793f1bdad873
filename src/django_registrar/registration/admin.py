"""Django admin configuration for the registration app."""

from django.contrib import admin, messages
from django.core.exceptions import ValidationError
from django.db.models import QuerySet
from django.http import HttpRequest

from django_registrar.registration.errors import PaymentAlreadyConfirmed
from django_registrar.registration.models import (
    Attendee,
    EventProcessingException,
    GatewayEvent,
    PaymentRecord,
    PendingRegistration,
    Registration,
    RegistrationLineItem,
)
from django_registrar.registration.services.manual import confirm_manually


@admin.register(Attendee)
class AttendeeAdmin(admin.ModelAdmin):
    list_display = ("email", "first_name", "last_name", "organization", "conference", "created_at")
    list_filter = ("conference",)
    search_fields = ("email", "first_name", "last_name", "organization")


class RegistrationLineItemInline(admin.TabularInline):
    """Inline display of line items within the registration admin.

    Line items are snapshots taken at purchase time and are shown read-only.
    """

    model = RegistrationLineItem
    extra = 0
    readonly_fields = ("offering", "name", "date", "category", "unit_price", "status")


class PaymentRecordInline(admin.TabularInline):
    model = PaymentRecord
    extra = 0
    fields = ("mode", "status", "amount", "gateway_session_id", "confirmed_at", "confirmed_by")
    readonly_fields = fields


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    """Admin interface for registrations.

    Totals are read-only; registrations are created by the reconciliation
    workflow, not edited by hand.
    """

    list_display = ("reference", "attendee", "conference", "total", "created_at")
    list_filter = ("conference",)
    search_fields = ("reference", "attendee__email", "attendee__last_name")
    readonly_fields = ("reference", "attendee", "conference", "total", "created_at")
    inlines = (RegistrationLineItemInline, PaymentRecordInline)


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    """Admin interface for payment records.

    Status and confirmation fields are read-only. Offline payments are
    confirmed through the "Confirm selected payments" action, which goes
    through the same conditional transition as the payments desk view.
    """

    list_display = (
        "registration",
        "mode",
        "status",
        "amount",
        "confirmed_by",
        "confirmed_at",
        "created_at",
    )
    list_filter = ("mode", "status", "confirmed_by", "registration__conference")
    search_fields = ("registration__reference", "registration__attendee__email", "gateway_session_id")
    readonly_fields = (
        "registration",
        "amount",
        "mode",
        "status",
        "gateway_session_id",
        "gateway_payment_id",
        "gateway_payment_method",
        "gateway_reference",
        "confirmed_at",
        "confirmed_by",
        "confirmed_by_user",
        "created_at",
        "updated_at",
    )
    actions = ("confirm_selected_payments",)

    @admin.action(description="Confirm selected payments", permissions=["change"])
    def confirm_selected_payments(self, request: HttpRequest, queryset: QuerySet) -> None:
        confirmed = skipped = 0
        for payment_id in queryset.values_list("pk", flat=True):
            try:
                confirm_manually(payment_id, request.user, note=f"Confirmed from admin by {request.user}")
            except (PaymentAlreadyConfirmed, ValidationError):
                skipped += 1
            else:
                confirmed += 1
        if confirmed:
            self.message_user(request, f"Confirmed {confirmed} payment(s).", messages.SUCCESS)
        if skipped:
            self.message_user(
                request,
                f"Skipped {skipped} payment(s) that were already confirmed or have failed.",
                messages.WARNING,
            )


@admin.register(PendingRegistration)
class PendingRegistrationAdmin(admin.ModelAdmin):
    """Read-only admin for parked registration intents."""

    list_display = ("reference", "created_at", "expires_at")
    search_fields = ("reference",)
    readonly_fields = ("reference", "payload", "created_at", "expires_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: PendingRegistration | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(GatewayEvent)
class GatewayEventAdmin(admin.ModelAdmin):
    """Read-only admin for Stripe webhook events."""

    list_display = ("event_id", "kind", "conference", "processed", "livemode", "created_at")
    list_filter = ("kind", "processed", "livemode")
    search_fields = ("event_id", "session_id")
    readonly_fields = (
        "event_id",
        "kind",
        "conference",
        "livemode",
        "session_id",
        "payload",
        "processed",
        "created_at",
    )

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: GatewayEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: GatewayEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(EventProcessingException)
class EventProcessingExceptionAdmin(admin.ModelAdmin):
    """Read-only admin for webhook processing errors."""

    list_display = ("message", "event", "created_at")
    list_filter = ("created_at",)
    search_fields = ("message",)
    readonly_fields = ("event", "data", "message", "traceback", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False
