"""Custom signals for the registration app.

Receivers use these to drive notifications and realtime dashboards; none of
them participate in the reconciliation itself.

Signals:
    registration_confirmed: Sent after the transaction that confirms a
        registration's payment commits.
        Sender: The ``Registration`` class.
        Kwargs:
            registration: The confirmed ``Registration``.
            payment: The confirmed ``PaymentRecord`` (``None`` for
                zero-total registrations).
            actor: The ``PaymentRecord.Actor`` value that confirmed it.
    payment_failed: Sent when the gateway reports a checkout session as
        failed or expired.
        Sender: The ``PaymentRecord`` class.
        Kwargs:
            session_id: The checkout session id.
            payments_marked: Number of pending records moved to ``failed``.
    payment_orphaned: Sent when the gateway reports a session as paid but
        the registration intent is gone. Requires manual follow-up.
        Sender: The ``PaymentRecord`` class.
        Kwargs:
            session_id: The checkout session id.
            intent_reference: The reference recorded in the session metadata.
            session: The ``CheckoutSession`` returned by the gateway.
"""

from django.dispatch import Signal

registration_confirmed = Signal()
payment_failed = Signal()
payment_orphaned = Signal()
