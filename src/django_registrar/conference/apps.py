"""Django app configuration for the conference app."""

from django.apps import AppConfig


class DjangoRegistrarConferenceConfig(AppConfig):
    """Configuration for the conference app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_registrar.conference"
    label = "registrar_conference"
    verbose_name = "Conference"
