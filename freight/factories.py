"""Factories for generating demo/test data with factory_boy and Faker.

Use sequences for unique identifiers and Faker for descriptive fields.
"""

import datetime
import random
import secrets

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone
from factory import Faker
from factory.django import DjangoModelFactory

from . import models


class UserFactory(DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda obj: f"{obj.username}@example.com")
    first_name = Faker("first_name")
    last_name = Faker("last_name")
    role = "client"
    is_active = True

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        password = kwargs.pop("password", "password123")
        user = super()._create(model_class, *args, **kwargs)
        user.set_password(password)
        user.save()
        return user


class DispatcherFactory(UserFactory):
    username = factory.Sequence(lambda n: f"dispatcher{n}")
    role = "dispatcher"
    is_staff = True


class ClientUserFactory(UserFactory):
    username = factory.Sequence(lambda n: f"client{n}")
    role = "client"


class DriverUserFactory(UserFactory):
    username = factory.Sequence(lambda n: f"driver{n}")
    role = "driver"


class DriverFactory(DjangoModelFactory):
    """Linked driver (has an account). Pass user=None for a provisioned one."""

    class Meta:
        model = models.Driver

    user = factory.SubFactory(DriverUserFactory)
    first_name = Faker("first_name")
    last_name = Faker("last_name")
    email = factory.LazyAttribute(
        lambda obj: obj.user.email
        if obj.user
        else f"{obj.first_name.lower()}.{obj.last_name.lower()}@driver.test"
    )
    truck_type = models.Driver.TruckType.FLATBED
    truck_number = factory.Sequence(lambda n: f"TRK{n:04d}")
    availability_status = models.Driver.Availability.AVAILABLE


class ClientFactory(DjangoModelFactory):
    class Meta:
        model = models.Client

    user = factory.SubFactory(ClientUserFactory)
    first_name = Faker("first_name")
    last_name = Faker("last_name")
    email = factory.LazyAttribute(
        lambda obj: obj.user.email
        if obj.user
        else f"{obj.first_name.lower()}.{obj.last_name.lower()}@client.test"
    )
    phone_number = factory.Sequence(
        lambda n: f"555-{n % 900 + 100:03d}-{n % 10000:04d}"
    )
    address = Faker("street_address")


class LoadFactory(DjangoModelFactory):
    """A Pending load. Use the traits to build one further along."""

    class Meta:
        model = models.Load

    client = factory.SubFactory(ClientUserFactory)
    origin_address = Faker("street_address")
    destination_address = Faker("street_address")
    trailer_type = factory.LazyFunction(
        lambda: random.choice(models.TrailerType.values)
    )
    weight_lbs = factory.LazyFunction(lambda: random.randint(1_000, 45_000))
    pickup_date = factory.LazyFunction(
        lambda: timezone.localdate() + datetime.timedelta(days=1)
    )
    delivery_date = factory.LazyAttribute(
        lambda obj: obj.pickup_date + datetime.timedelta(days=2)
    )
    status = models.Load.Status.PENDING

    class Params:
        assigned = factory.Trait(
            status=models.Load.Status.ASSIGNED,
            driver=factory.SubFactory(DriverUserFactory),
            driver_name=factory.LazyAttribute(lambda obj: obj.driver.get_full_name()),
            truck_number=factory.Sequence(lambda n: f"TRK{n:04d}"),
            price_cents=150_000,
            assigned_at=factory.LazyFunction(timezone.now),
        )
        payment_due = factory.Trait(
            payment_required=True,
            payment_status=models.Load.PaymentStatus.PENDING,
            price_cents=150_000,
        )


class NotificationFactory(DjangoModelFactory):
    class Meta:
        model = models.Notification

    user = factory.SubFactory(ClientUserFactory)
    type = models.Notification.Type.LOAD_SUBMITTED
    title = "Load Request Submitted"
    message = Faker("sentence")


class PushSubscriptionFactory(DjangoModelFactory):
    class Meta:
        model = models.PushSubscription

    user = factory.SubFactory(ClientUserFactory)
    endpoint = factory.Sequence(lambda n: f"https://push.example.com/send/{n}")
    p256dh = "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM"
    auth = "tBHItJI5svbpez7KI4CCXg"


class DispatcherInviteFactory(DjangoModelFactory):
    class Meta:
        model = models.DispatcherInvite

    email = factory.Sequence(lambda n: f"invitee{n}@example.com")
    token = factory.LazyFunction(lambda: secrets.token_urlsafe(32))
    invited_by = factory.SubFactory(DispatcherFactory)
    expires_at = factory.LazyFunction(
        lambda: timezone.now() + datetime.timedelta(days=7)
    )
