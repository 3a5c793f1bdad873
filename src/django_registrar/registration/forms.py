"""Forms for the registration app."""

from django import forms

from django_registrar.conference.models import Conference, EventOffering
from django_registrar.registration.models import PaymentRecord


class RegistrationSubmissionForm(forms.Form):
    """A registration submission for one conference.

    Bound to the JSON body of the submit endpoint. ``offerings`` is limited
    to the conference's active offerings. Keys the form does not declare are
    kept by the view as free-form profile data.
    """

    email = forms.EmailField()
    first_name = forms.CharField(max_length=150)
    last_name = forms.CharField(max_length=150)
    phone = forms.CharField(max_length=50, required=False)
    organization = forms.CharField(max_length=200, required=False)
    offerings = forms.ModelMultipleChoiceField(queryset=EventOffering.objects.none())
    payment_mode = forms.ChoiceField(choices=PaymentRecord.Mode.choices, required=False)
    success_url = forms.URLField(max_length=500, required=False)
    cancel_url = forms.URLField(max_length=500, required=False)

    def __init__(self, *args: object, conference: Conference, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.conference = conference
        self.fields["offerings"].queryset = EventOffering.objects.filter(conference=conference, is_active=True)

    def clean_email(self) -> str:
        return self.cleaned_data["email"].strip().lower()

    def clean_payment_mode(self) -> str:
        return self.cleaned_data.get("payment_mode") or PaymentRecord.Mode.ONLINE


class ManualConfirmForm(forms.Form):
    """Operator input when confirming an offline payment."""

    transaction_reference = forms.CharField(max_length=255, required=False, strip=True)
    note = forms.CharField(widget=forms.Textarea, required=False)
