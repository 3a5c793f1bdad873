"""Admin for conferences and the offerings registrants choose from.

Stripe keys are write-only in the admin: the form shows a mask when a key
is stored and keeps the stored key unless a new one is typed in.
"""

from django import forms
from django.contrib import admin

from django_registrar.conference.models import Conference, EventOffering

KEY_MASK = "•" * 12

STRIPE_KEY_FIELDS = ("stripe_secret_key", "stripe_publishable_key", "stripe_webhook_secret")


def _keeps_stored_key(submitted: str | None) -> bool:
    return not submitted or submitted == KEY_MASK


class MaskedKeyInput(forms.PasswordInput):
    """Renders ``KEY_MASK`` for a stored key and nothing otherwise."""

    def __init__(self, attrs: dict[str, str] | None = None) -> None:
        super().__init__({"autocomplete": "off", **(attrs or {})}, render_value=True)

    def format_value(self, value: str | None) -> str:
        return KEY_MASK if value else ""


class StoredKeyField(forms.CharField):
    """Optional key field; a blank or masked submission returns ``initial``."""

    widget = MaskedKeyInput

    def __init__(self, **kwargs: object) -> None:
        kwargs.setdefault("required", False)
        super().__init__(**kwargs)

    def has_changed(self, initial: str | None, data: str | None) -> bool:
        return not _keeps_stored_key(data) and super().has_changed(initial, data)

    def clean(self, value: str | None) -> str | None:
        if _keeps_stored_key(value):
            return self.initial
        return super().clean(value)


class ConferenceForm(forms.ModelForm):
    """Conference form with write-only Stripe keys.

    The key fields are seeded from the instance so that ``clean`` can hand
    the stored key back when the operator leaves the mask in place.
    """

    stripe_secret_key = StoredKeyField()
    stripe_publishable_key = StoredKeyField()
    stripe_webhook_secret = StoredKeyField()

    class Meta:
        model = Conference
        exclude: list[str] = []

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        for name in STRIPE_KEY_FIELDS:
            self.fields[name].initial = getattr(self.instance, name, None)


class EventOfferingInline(admin.TabularInline):
    """Inline editor for the offerings registrants can select."""

    model = EventOffering
    extra = 1
    prepopulated_fields = {"slug": ("name",)}
    fields = ("name", "slug", "date", "price", "category", "status", "is_active", "order")


@admin.register(Conference)
class ConferenceAdmin(admin.ModelAdmin):
    """Admin interface for managing conferences.

    Groups fields into basic information, dates, pricing, the Stripe
    integration, and status. Offerings are editable inline.
    """

    form = ConferenceForm
    list_display = ("name", "slug", "start_date", "end_date", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}
    inlines = (EventOfferingInline,)

    fieldsets = (
        (None, {"fields": ("name", "slug", "venue")}),
        ("Dates", {"fields": ("start_date", "end_date", "timezone")}),
        ("Pricing", {"fields": ("currency", "bundle_category", "bundle_discount")}),
        ("Stripe", {"fields": STRIPE_KEY_FIELDS, "classes": ("collapse",)}),
        ("Status", {"fields": ("is_active",)}),
    )


@admin.register(EventOffering)
class EventOfferingAdmin(admin.ModelAdmin):
    """Admin interface for event offerings."""

    list_display = ("name", "conference", "category", "date", "price", "is_active", "order")
    list_filter = ("conference", "category", "is_active")
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}
