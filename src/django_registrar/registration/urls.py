"""URL configuration for the registration app.

Includes registration submission, the checkout status poll, operator payment
confirmation, the intent storage API, and the Stripe webhook endpoint. Mount
these under a conference-scoped prefix in the host project::

    urlpatterns = [
        path(
            "<slug:conference_slug>/registration/",
            include("django_registrar.registration.urls"),
        ),
    ]
"""

from django.urls import path

from django_registrar.registration.views import (
    IntentDetailView,
    ManualConfirmView,
    SubmitRegistrationView,
    VerifyCheckoutView,
)
from django_registrar.registration.webhooks import stripe_webhook

app_name = "registration"

urlpatterns = [
    path("submit/", SubmitRegistrationView.as_view(), name="submit"),
    path("verify/", VerifyCheckoutView.as_view(), name="verify"),
    path("payments/<int:payment_id>/confirm/", ManualConfirmView.as_view(), name="payment-confirm"),
    path("intents/<str:reference>/", IntentDetailView.as_view(), name="intent-detail"),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
