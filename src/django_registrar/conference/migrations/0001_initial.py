import django.db.models.deletion
import encrypted_fields.fields
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Conference",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=200, unique=True)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("timezone", models.CharField(default="UTC", max_length=100)),
                ("venue", models.CharField(blank=True, default="", max_length=300)),
                (
                    "currency",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="ISO 4217 code. Blank falls back to DJANGO_REGISTRAR['currency'].",
                        max_length=3,
                    ),
                ),
                ("bundle_category", models.CharField(blank=True, default="", max_length=20)),
                ("bundle_discount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10)),
                (
                    "stripe_secret_key",
                    encrypted_fields.fields.EncryptedCharField(blank=True, default=None, max_length=200, null=True),
                ),
                (
                    "stripe_publishable_key",
                    encrypted_fields.fields.EncryptedCharField(blank=True, default=None, max_length=200, null=True),
                ),
                (
                    "stripe_webhook_secret",
                    encrypted_fields.fields.EncryptedCharField(blank=True, default=None, max_length=200, null=True),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-start_date"],
            },
        ),
        migrations.CreateModel(
            name="EventOffering",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=200)),
                ("date", models.DateField(blank=True, null=True)),
                ("price", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("conference", "Conference"),
                            ("workshop", "Workshop"),
                            ("exhibition", "Exhibition"),
                            ("side-event", "Side Event"),
                        ],
                        default="conference",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text='Free-form status snapshotted onto line items, e.g. "confirmed" or "tentative".',
                        max_length=50,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("order", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "conference",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="offerings",
                        to="registrar_conference.conference",
                    ),
                ),
            ],
            options={
                "ordering": ["order", "date", "name"],
                "unique_together": {("conference", "slug")},
            },
        ),
    ]
