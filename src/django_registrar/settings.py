"""Typed configuration for django-registrar.

Reads a single ``DJANGO_REGISTRAR`` dict from Django settings and exposes it
as composed, frozen dataclasses with sensible defaults.

Usage::

    from django_registrar.settings import get_config

    config = get_config()
    config.stripe.timeout_seconds
    config.intent_ttl_minutes
    config.currency
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe Checkout gateway configuration.

    Secret and webhook keys are stored per conference; only the transport
    settings shared by every conference live here.
    """

    api_version: str = "2024-12-18"
    webhook_tolerance: int = 300
    timeout_seconds: float = 10.0
    max_network_retries: int = 2


@dataclass(frozen=True, slots=True)
class RegistrarConfig:
    """Top-level django-registrar configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    intent_ttl_minutes: int = 60
    intent_store: str = "django_registrar.registration.intents.DatabaseIntentStore"
    intent_cache_alias: str = "default"
    intent_api_token: str | None = None
    registration_reference_prefix: str = "REG"
    currency: str = "USD"
    sweep_batch_size: int = 500


@functools.lru_cache(maxsize=1)
def get_config() -> RegistrarConfig:
    """Build and return the registrar configuration.

    Reads ``settings.DJANGO_REGISTRAR`` (a plain dict) and returns a frozen
    :class:`RegistrarConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_REGISTRAR", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_REGISTRAR must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    stripe_data = raw_data.pop("stripe", {})
    if not isinstance(stripe_data, Mapping):
        msg = "DJANGO_REGISTRAR['stripe'] must be a mapping (dict-like object)"
        raise TypeError(msg)

    config = RegistrarConfig(
        stripe=StripeConfig(**dict(stripe_data)),
        **raw_data,
    )
    _validate_registrar_config(config)
    return config


def _validate_registrar_config(config: RegistrarConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.intent_ttl_minutes, int) or config.intent_ttl_minutes <= 0:
        msg = "DJANGO_REGISTRAR['intent_ttl_minutes'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.sweep_batch_size, int) or config.sweep_batch_size <= 0:
        msg = "DJANGO_REGISTRAR['sweep_batch_size'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "DJANGO_REGISTRAR['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.intent_store, str) or "." not in config.intent_store:
        msg = "DJANGO_REGISTRAR['intent_store'] must be a dotted import path"
        raise ValueError(msg)
    if not isinstance(config.registration_reference_prefix, str) or not config.registration_reference_prefix:
        msg = "DJANGO_REGISTRAR['registration_reference_prefix'] must be a non-empty string"
        raise ValueError(msg)
    timeout = config.stripe.timeout_seconds
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        msg = "DJANGO_REGISTRAR['stripe']['timeout_seconds'] must be a positive number"
        raise ValueError(msg)
    if not isinstance(config.stripe.max_network_retries, int) or config.stripe.max_network_retries < 0:
        msg = "DJANGO_REGISTRAR['stripe']['max_network_retries'] must be a non-negative integer"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_REGISTRAR":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_registrar.settings.clear_config_cache")
