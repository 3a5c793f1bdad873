"""Django app configuration for the registration app."""

from django.apps import AppConfig


class DjangoRegistrarRegistrationConfig(AppConfig):
    """Configuration for the registration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_registrar.registration"
    label = "registrar_registration"
    verbose_name = "Registration"
