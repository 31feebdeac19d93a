# forms.py
from decimal import Decimal
from typing import cast

from django import forms
from django.forms import ModelChoiceField

from freight.services.assignment import available_drivers, parse_price_to_cents

from .models import Client, Driver, Load

_DT_LOCAL_FMT = "%Y-%m-%dT%H:%M"


class LoadRequestForm(forms.ModelForm):
    """
    Client-facing load request.

    Only collects input; `lifecycle.submit_load` builds and validates the
    Load, so the form is never saved directly.
    """

    class Meta:
        model = Load
        fields = [
            "origin_address",
            "destination_address",
            "trailer_type",
            "weight_lbs",
            "pickup_date",
            "pickup_time",
            "delivery_date",
            "delivery_time",
            "delivery_asap",
            "payment_required",
        ]
        widgets = {
            "pickup_date": forms.DateInput(attrs={"type": "date"}),
            "pickup_time": forms.TimeInput(attrs={"type": "time"}),
            "delivery_date": forms.DateInput(attrs={"type": "date"}),
            "delivery_time": forms.TimeInput(attrs={"type": "time"}),
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        placeholders = {
            "origin_address": "Pickup address",
            "destination_address": "Delivery address",
            "weight_lbs": "e.g. 42000",
        }
        for name, field in self.fields.items():
            if name in placeholders:
                field.widget.attrs.setdefault("placeholder", placeholders[name])

    def clean(self):
        cleaned = super().clean()
        if not cleaned.get("delivery_asap") and not cleaned.get("delivery_date"):
            self.add_error("delivery_date", "Choose a delivery date or mark it ASAP.")
        return cleaned

    def _post_clean(self):
        # Model validation runs in the service layer
        pass


class AssignDriverForm(forms.Form):
    """
    Dispatcher form for the initial assignment and for later edits.

    The price is entered in dollars and exposed as `price_cents`.
    """

    driver = forms.ModelChoiceField(queryset=Driver.objects.none())
    truck_number = forms.CharField(max_length=50)
    price = forms.DecimalField(min_value=Decimal("0.01"), decimal_places=2, max_digits=10)
    eta = forms.DateTimeField(
        required=False,
        widget=forms.DateTimeInput(
            attrs={"type": "datetime-local", "step": "60"}, format=_DT_LOCAL_FMT
        ),
    )

    def __init__(self, *args, load=None, **kwargs):
        self.load = load
        super().__init__(*args, **kwargs)
        self.fields["eta"].input_formats = [_DT_LOCAL_FMT]

        driver_field = cast(ModelChoiceField, self.fields["driver"])
        # keep the current driver selectable when editing
        driver_field.queryset = available_drivers(
            include_user_id=load.driver_id if load is not None else None
        )
        driver_field.label_from_instance = _driver_label

    @property
    def price_cents(self):
        return parse_price_to_cents(self.cleaned_data["price"])

    @classmethod
    def initial_for(cls, load):
        """Initial values for editing an existing assignment."""
        if not load.driver_id:
            return {}
        driver = Driver.objects.filter(user_id=load.driver_id).first()
        return {
            "driver": driver,
            "truck_number": load.truck_number,
            "price": Decimal(load.price_cents) / 100 if load.price_cents else None,
            "eta": load.eta,
        }


def _driver_label(driver):
    count = getattr(driver, "active_load_count", None)
    label = f"{driver.full_name} - Truck #{driver.truck_number}"
    if count is not None:
        label += f" ({count} active)"
    return label


class DriverForm(forms.ModelForm):
    class Meta:
        model = Driver
        fields = ["email", "first_name", "last_name", "truck_type", "truck_number"]


class ClientForm(forms.ModelForm):
    class Meta:
        model = Client
        fields = ["email", "first_name", "last_name", "phone_number", "address"]


class ClientProfileForm(forms.ModelForm):
    """Contact details a client may change themselves; email stays fixed."""

    class Meta:
        model = Client
        fields = ["first_name", "last_name", "phone_number", "address"]
        widgets = {"address": forms.Textarea(attrs={"rows": 3})}


class AvailabilityForm(forms.Form):
    availability_status = forms.ChoiceField(choices=Driver.Availability.choices)
    available_at = forms.DateTimeField(
        required=False,
        widget=forms.DateTimeInput(
            attrs={"type": "datetime-local", "step": "60"}, format=_DT_LOCAL_FMT
        ),
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["available_at"].input_formats = [_DT_LOCAL_FMT]


class DispatcherInviteForm(forms.Form):
    email = forms.EmailField()
