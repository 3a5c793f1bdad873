"""Exceptions raised by the registration reconciliation subsystem.

Expected reconciliation outcomes (not yet paid, failed, already confirmed,
intent missing) are return values, not exceptions. The classes here cover
infrastructure failures, malformed input, and the manual override's
idempotent "already confirmed" case.
"""

from typing import Any


class RegistrarError(Exception):
    """Base class for django-registrar errors."""


class GatewayError(RegistrarError):
    """Base class for errors raised by the checkout gateway adapter."""


class GatewayUnavailable(GatewayError):
    """The gateway could not be reached or timed out. Safe to retry."""


class InvalidAmount(GatewayError):
    """A checkout session was requested for a non-positive amount."""


class GatewayRejected(GatewayError):
    """The gateway refused the request (bad or revoked key, invalid parameters). Not retryable."""


class SessionNotFound(GatewayError):
    """The gateway has no checkout session with the given id."""


class MalformedPayload(GatewayError):
    """A webhook payload could not be parsed or its signature did not verify."""


class IntentNotFound(RegistrarError):
    """No live registration intent exists for the given reference."""


class PaymentAlreadyConfirmed(RegistrarError):
    """The payment record is already confirmed; nothing was changed.

    Attributes:
        payment: The already-confirmed ``PaymentRecord``.
    """

    def __init__(self, payment: Any) -> None:
        self.payment = payment
        super().__init__(f"Payment {payment.pk} is already confirmed")
