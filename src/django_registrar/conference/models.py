"""Conference and event offering models for django-registrar."""

from decimal import Decimal

from django.db import models
from encrypted_fields import EncryptedCharField


class Conference(models.Model):
    """A conference event with dates, venue, and payment gateway settings.

    The central model that all other apps reference. Stores the Stripe keys
    per conference so each event can collect payments into its own account.
    The optional bundle discount is taken off the total when a registrant
    selects every active offering of ``bundle_category``.
    """

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    start_date = models.DateField()
    end_date = models.DateField()
    timezone = models.CharField(max_length=100, default="UTC")
    venue = models.CharField(max_length=300, blank=True, default="")

    currency = models.CharField(
        max_length=3,
        blank=True,
        default="",
        help_text="ISO 4217 code. Blank falls back to DJANGO_REGISTRAR['currency'].",
    )
    bundle_category = models.CharField(max_length=20, blank=True, default="")
    bundle_discount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    stripe_secret_key = EncryptedCharField(max_length=200, blank=True, null=True, default=None)
    stripe_publishable_key = EncryptedCharField(max_length=200, blank=True, null=True, default=None)
    stripe_webhook_secret = EncryptedCharField(max_length=200, blank=True, null=True, default=None)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_date"]

    def __str__(self) -> str:
        return self.name


class EventOffering(models.Model):
    """A selectable event within a conference (plenary day, workshop, expo pass).

    Registrants pick one or more offerings; each selection becomes a line
    item on the registration, snapshotting the name, date, price, and
    status at the time of purchase.
    """

    class Category(models.TextChoices):
        """Kinds of offering a registrant can select."""

        CONFERENCE = "conference", "Conference"
        WORKSHOP = "workshop", "Workshop"
        EXHIBITION = "exhibition", "Exhibition"
        SIDE_EVENT = "side-event", "Side Event"

    conference = models.ForeignKey(
        Conference,
        on_delete=models.CASCADE,
        related_name="offerings",
    )
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200)
    date = models.DateField(null=True, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    category = models.CharField(
        max_length=20,
        choices=Category.choices,
        default=Category.CONFERENCE,
    )
    status = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text='Free-form status snapshotted onto line items, e.g. "confirmed" or "tentative".',
    )
    is_active = models.BooleanField(default=True)
    order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["order", "date", "name"]
        unique_together = [("conference", "slug")]

    def __str__(self) -> str:
        return f"{self.name} ({self.conference.slug})"
