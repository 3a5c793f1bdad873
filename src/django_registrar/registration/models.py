"""Registration, payment, intent, and webhook models for django-registrar."""

from django.conf import settings
from django.db import models


class Attendee(models.Model):
    """The person a registration belongs to.

    Identified within a conference by email address; the pair is unique at
    the database level so concurrent materializations for the same person
    cannot create two attendees.
    """

    conference = models.ForeignKey(
        "registrar_conference.Conference",
        on_delete=models.CASCADE,
        related_name="attendees",
    )
    email = models.EmailField()
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    phone = models.CharField(max_length=50, blank=True, default="")
    organization = models.CharField(max_length=200, blank=True, default="")
    profile = models.JSONField(
        default=dict,
        blank=True,
        help_text="Remaining submitted form data not mapped to a column.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["last_name", "first_name"]
        constraints = [
            models.UniqueConstraint(
                fields=["conference", "email"],
                name="registrar_attendee_unique_email_per_conference",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.first_name} {self.last_name} <{self.email}>"


class Registration(models.Model):
    """A durable, paid-for (or payment-pending offline) registration.

    Created together with its line items and payment record in a single
    transaction. An attendee has at most one registration, enforced by the
    one-to-one relation.
    """

    conference = models.ForeignKey(
        "registrar_conference.Conference",
        on_delete=models.CASCADE,
        related_name="registrations",
    )
    attendee = models.OneToOneField(
        Attendee,
        on_delete=models.CASCADE,
        related_name="registration",
    )
    reference = models.CharField(
        max_length=100,
        unique=True,
        help_text='Unique registration reference, e.g. "REG-A1B2C3D4".',
    )
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.reference} ({self.attendee.email})"


class RegistrationLineItem(models.Model):
    """A snapshot of a selected offering at the time of purchase.

    The link back to ``EventOffering`` is optional so line items survive the
    offering being deleted later.
    """

    registration = models.ForeignKey(
        Registration,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    offering = models.ForeignKey(
        "registrar_conference.EventOffering",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="line_items",
    )
    name = models.CharField(max_length=200)
    date = models.DateField(null=True, blank=True)
    category = models.CharField(max_length=20, blank=True, default="")
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=50, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.name} ({self.unit_price})"


class PaymentRecord(models.Model):
    """The payment backing a registration.

    ``status`` only ever moves ``pending -> confirmed`` or
    ``pending -> failed``. Transitions are issued as conditional updates
    (see :mod:`django_registrar.registration.services.payment_status`) so a
    confirmed or failed record is never rewritten. ``gateway_session_id`` is
    the idempotency key for online payments and is unique when present.
    """

    class Mode(models.TextChoices):
        """How the registrant pays."""

        ONLINE = "online", "Online"
        BANK_TRANSFER = "bank-transfer", "Bank Transfer"
        WALK_IN = "walk-in", "Walk-in / On-site"

    class Status(models.TextChoices):
        """Lifecycle states for a payment record."""

        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        FAILED = "failed", "Failed"

    class Actor(models.TextChoices):
        """Which entry point confirmed the payment."""

        GATEWAY_WEBHOOK = "gateway-webhook", "Gateway webhook"
        CLIENT_POLL = "client-poll", "Client poll"
        OPERATOR = "operator", "Operator"
        TEST_HARNESS = "test-harness", "Test harness"

    registration = models.ForeignKey(
        Registration,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    mode = models.CharField(max_length=20, choices=Mode.choices, default=Mode.ONLINE)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    gateway_session_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        default=None,
        help_text="Checkout session id; NULL for offline payment modes.",
    )
    gateway_payment_id = models.CharField(max_length=255, blank=True, default="")
    gateway_payment_method = models.CharField(max_length=100, blank=True, default="")
    gateway_reference = models.CharField(max_length=255, blank=True, default="")
    transaction_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Receipt or bank reference entered by an operator.",
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)
    confirmed_by = models.CharField(max_length=20, choices=Actor.choices, blank=True, default="")
    confirmed_by_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="confirmed_registration_payments",
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    ~models.Q(status="confirmed")
                    | (models.Q(confirmed_at__isnull=False) & ~models.Q(confirmed_by=""))
                ),
                name="registrar_payment_confirmed_has_actor",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.mode} {self.amount} for {self.registration.reference} ({self.status})"


class PendingRegistration(models.Model):
    """Database row backing :class:`~django_registrar.registration.intents.DatabaseIntentStore`.

    Holds a serialized registration intent until it is materialized or its
    ``expires_at`` passes.
    """

    reference = models.CharField(max_length=100, unique=True)
    payload = models.JSONField(default=dict)
    created_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ["expires_at"]

    def __str__(self) -> str:
        return self.reference


class GatewayEvent(models.Model):
    """A webhook delivery received from the payment gateway.

    Persisted before dispatch so repeated deliveries of an already-processed
    event are acknowledged without re-running the handler.
    """

    event_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=100)
    conference = models.ForeignKey(
        "registrar_conference.Conference",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="gateway_events",
    )
    livemode = models.BooleanField(default=False)
    session_id = models.CharField(max_length=255, blank=True, default="")
    payload = models.JSONField(default=dict)
    processed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} ({self.event_id})"


class EventProcessingException(models.Model):
    """A captured failure while handling a :class:`GatewayEvent`."""

    event = models.ForeignKey(
        GatewayEvent,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="exceptions",
    )
    data = models.TextField(blank=True, default="")
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.event}: {self.message[:80]}"
