import datetime
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

MAX_WEIGHT_LBS = 100_000


class BaseModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        abstract = True


class TrailerType(models.TextChoices):
    FLAT_BED = "Flat Bed", "Flat Bed"
    STEP_DECK = "Step Deck", "Step Deck"
    MINIFLOAT = "Minifloat", "Minifloat"
    ONE_TON = "1Ton", "1 Ton"


class Driver(BaseModel):
    """
    Truck driver record maintained by dispatch.

    Drivers are provisioned by a dispatcher before the person has an account.
    `user` stays empty until someone signs up with the same email, at which
    point the record is linked. Drivers are never hard-deleted while loads
    reference them; `is_active` is cleared instead.
    """

    class TruckType(models.TextChoices):
        FLATBED = "Flatbed", "Flatbed"
        DRY_VAN = "Dry Van", "Dry Van"
        REEFER = "Reefer", "Reefer"
        TANKER = "Tanker", "Tanker"
        LOWBOY = "Lowboy", "Lowboy"
        STEP_DECK = "Step Deck", "Step Deck"
        HOTSHOT = "Hotshot", "Hotshot"

    class Availability(models.TextChoices):
        AVAILABLE = "Available", "Available"
        NOT_AVAILABLE = "Not Available", "Not Available"
        RESETTING = "Resetting", "Resetting (34-hour reset)"
        MAINTENANCE = "Maintenance", "Maintenance"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="driver_profile",
        help_text="Empty until the driver signs up with the matching email",
    )
    email = models.EmailField()

    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)

    truck_type = models.CharField(max_length=20, choices=TruckType.choices)
    truck_number = models.CharField(max_length=50)

    availability_status = models.CharField(
        max_length=20,
        choices=Availability.choices,
        default=Availability.AVAILABLE,
        blank=True,
    )
    available_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a Not Available driver becomes available again",
    )

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_linked(self):
        return self.user_id is not None

    @property
    def is_assignable(self):
        return (
            self.is_active
            and self.is_linked
            and self.availability_status
            in ("", self.Availability.AVAILABLE)
        )


class Client(BaseModel):
    """Shipper account; same provisioned/linked lifecycle as Driver."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="client_profile",
    )
    email = models.EmailField()

    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    phone_number = models.CharField(max_length=20)
    address = models.CharField(max_length=255)

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_linked(self):
        return self.user_id is not None


class Load(BaseModel):
    """
    A shipment request - the core business entity.

    Status only moves forward through `Status`. It is written exclusively by
    `freight.services.lifecycle`, which issues a conditional update per
    transition; never assign `status` directly and call save().
    """

    class Status(models.TextChoices):
        PENDING = "Pending", "Pending"
        ASSIGNED = "Assigned", "Assigned"
        ARRIVED = "Arrived", "Arrived at Pickup"
        LOADED = "Loaded", "Loaded"
        IN_TRANSIT = "In-Transit", "In Transit"
        ARRIVED_AT_DELIVERY = "Arrived at Delivery", "Arrived at Delivery"
        DELIVERED = "Delivered", "Delivered"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    # status -> timestamp stamped when the status is reached
    TIMESTAMP_FIELDS = {
        Status.ASSIGNED: "assigned_at",
        Status.ARRIVED: "arrived_at",
        Status.LOADED: "loaded_at",
        Status.IN_TRANSIT: "in_transit_at",
        Status.ARRIVED_AT_DELIVERY: "arrived_at_delivery_at",
        Status.DELIVERED: "delivered_at",
    }

    # Statuses in which a driver is working the load
    ACTIVE_STATUSES = [
        Status.ASSIGNED,
        Status.ARRIVED,
        Status.LOADED,
        Status.IN_TRANSIT,
        Status.ARRIVED_AT_DELIVERY,
    ]

    # Simplified labels shown on client-facing views
    CLIENT_STATUS_LABELS = {
        Status.PENDING: "Pending",
        Status.ASSIGNED: "Approved",
        Status.ARRIVED: "Approved",
        Status.LOADED: "Approved",
        Status.IN_TRANSIT: "In-Transit",
        Status.ARRIVED_AT_DELIVERY: "In-Transit",
        Status.DELIVERED: "Delivered",
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Ownership (immutable after creation)
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_loads",
    )

    # Route
    origin_address = models.CharField(max_length=255)
    destination_address = models.CharField(max_length=255)

    # Physical
    trailer_type = models.CharField(max_length=20, choices=TrailerType.choices)
    weight_lbs = models.PositiveIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(MAX_WEIGHT_LBS)]
    )

    # Schedule
    pickup_date = models.DateField()
    pickup_time = models.TimeField(null=True, blank=True)
    delivery_date = models.DateField(null=True, blank=True)
    delivery_time = models.TimeField(null=True, blank=True)
    delivery_asap = models.BooleanField(default=False)

    # Status
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )

    # Milestone timestamps (set once by the lifecycle manager)
    assigned_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    loaded_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    arrived_at_delivery_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    # Assignment (written together)
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="driver_loads",
        help_text="Account of the assigned driver",
    )
    driver_name = models.CharField(
        max_length=120,
        blank=True,
        null=True,
        help_text="Driver name at assignment time (snapshot)",
    )
    truck_number = models.CharField(max_length=50, blank=True, null=True)
    price_cents = models.PositiveIntegerField(null=True, blank=True)
    eta = models.DateTimeField(null=True, blank=True)

    # Delivery proof
    client_signature_url = models.CharField(max_length=255, blank=True, null=True)
    signature_timestamp = models.DateTimeField(null=True, blank=True)

    # Payment
    payment_required = models.BooleanField(default=False)
    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, blank=True, null=True
    )
    payment_intent_id = models.CharField(max_length=255, blank=True, null=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"#{self.reference} {self.origin_address} → {self.destination_address}"

    def clean(self):
        super().clean()
        errors = {}
        if self.price_cents is not None and self.price_cents <= 0:
            errors["price_cents"] = "Price must be a positive amount."
        if (
            isinstance(self.delivery_date, datetime.date)
            and isinstance(self.pickup_date, datetime.date)
            and self.delivery_date < self.pickup_date
        ):
            errors["delivery_date"] = "Delivery date cannot be before pickup date."
        if errors:
            raise ValidationError(errors)

    @property
    def reference(self):
        """Short id shown to users and in emails."""
        return str(self.id)[:8]

    @staticmethod
    def status_rank(status):
        """Position of `status` in the forward order; ValueError if unknown."""
        return list(Load.Status).index(Load.Status(status))

    @property
    def client_status(self):
        return self.CLIENT_STATUS_LABELS[Load.Status(self.status)]

    @property
    def is_assigned(self):
        return self.driver_id is not None

    @property
    def is_delivered(self):
        return self.status == self.Status.DELIVERED

    @property
    def price_display(self):
        if self.price_cents is None:
            return None
        return f"${self.price_cents / 100:,.2f}"

    def timeline(self):
        """
        Ordered list of stages with their timestamps.

        Stages not reached yet have `at=None`. A skipped Arrived at Delivery
        stage on a delivered load is reported with `skipped=True`.
        """
        rank = self.status_rank(self.status)
        stages = [
            {
                "status": Load.Status.PENDING,
                "label": Load.Status.PENDING.label,
                "at": self.created_at,
                "reached": True,
                "skipped": False,
            }
        ]
        for status, field in self.TIMESTAMP_FIELDS.items():
            at = getattr(self, field)
            reached = self.status_rank(status) <= rank
            stages.append(
                {
                    "status": status,
                    "label": status.label,
                    "at": at,
                    "reached": reached and at is not None,
                    "skipped": reached and at is None,
                }
            )
        return stages


class Notification(models.Model):
    """In-app notification row. Written by the dispatch service only."""

    class Type(models.TextChoices):
        LOAD_SUBMITTED = "load_submitted", "Load Submitted"
        NEW_LOAD = "new_load", "New Load"
        LOAD_APPROVED = "load_approved", "Load Approved"
        STATUS_IN_TRANSIT = "status_in_transit", "In Transit"
        STATUS_DELIVERED = "status_delivered", "Delivered"
        ETA_UPDATED = "eta_updated", "ETA Updated"
        DRIVER_AVAILABILITY = "driver_availability", "Driver Availability"
        PAYMENT_RECEIVED = "payment_received", "Payment Received"
        PAYMENT_CONFIRMED = "payment_confirmed", "Payment Confirmed"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=30, choices=Type.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()
    load = models.ForeignKey(
        Load,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.type} → {self.user_id}"


class PushSubscription(models.Model):
    """A browser/device registered for web push."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="push_subscriptions",
    )
    endpoint = models.URLField(max_length=500)
    p256dh = models.CharField(max_length=255)
    auth = models.CharField(max_length=255)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "endpoint"], name="unique_push_endpoint_per_user"
            )
        ]

    def as_subscription_info(self):
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class DispatcherInvite(models.Model):
    """Single-use invitation for a new dispatcher account."""

    email = models.EmailField()
    token = models.CharField(max_length=64, unique=True)
    invited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="dispatcher_invites",
    )
    expires_at = models.DateTimeField()
    used = models.BooleanField(default=False)
    used_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Invite {self.email}"

    @property
    def is_expired(self):
        return self.expires_at < timezone.now()

    @property
    def is_pending(self):
        return not self.used and not self.is_expired
