"""
Notification events: who hears about them and what they are told.

All audience rules live in `AUDIENCE`; call sites only name the event.
"""

from dataclasses import dataclass

from django.db import models
from django.utils import timezone

from freight.models import Notification


class EventType(models.TextChoices):
    LOAD_SUBMITTED = "load_submitted", "Load submitted"
    LOAD_APPROVED = "load_approved", "Load approved"
    STATUS_IN_TRANSIT = "status_in_transit", "In transit"
    STATUS_DELIVERED = "status_delivered", "Delivered"
    ETA_UPDATED = "eta_updated", "ETA updated"
    DRIVER_AVAILABILITY = "driver_availability", "Driver availability"
    PAYMENT_RECEIVED = "payment_received", "Payment received"


@dataclass(frozen=True)
class Audience:
    notify_client: bool
    notify_dispatchers: bool


AUDIENCE = {
    EventType.LOAD_SUBMITTED: Audience(notify_client=True, notify_dispatchers=True),
    EventType.LOAD_APPROVED: Audience(notify_client=True, notify_dispatchers=False),
    EventType.STATUS_IN_TRANSIT: Audience(
        notify_client=True, notify_dispatchers=False
    ),
    EventType.STATUS_DELIVERED: Audience(
        notify_client=True, notify_dispatchers=False
    ),
    EventType.ETA_UPDATED: Audience(notify_client=True, notify_dispatchers=False),
    EventType.DRIVER_AVAILABILITY: Audience(
        notify_client=False, notify_dispatchers=True
    ),
    EventType.PAYMENT_RECEIVED: Audience(notify_client=True, notify_dispatchers=True),
}


def _fmt_datetime(value):
    if value is None:
        return None
    return timezone.localtime(value).strftime("%b %d, %Y at %I:%M %p")


def load_payload(load) -> dict:
    """Structured data about a load for emails, in-app rows and push."""
    return {
        "load_id": str(load.pk),
        "reference": load.reference,
        "origin_address": load.origin_address,
        "destination_address": load.destination_address,
        "pickup_date": load.pickup_date.strftime("%A, %B %d, %Y")
        if load.pickup_date
        else None,
        "trailer_type": load.trailer_type,
        "weight_lbs": load.weight_lbs,
        "driver_name": load.driver_name,
        "truck_number": load.truck_number,
        "eta": _fmt_datetime(load.eta),
        "price": load.price_display,
        "client_email": load.client.email if load.client_id else None,
    }


def driver_payload(driver) -> dict:
    return {
        "driver_name": driver.full_name,
        "truck_number": driver.truck_number,
        "availability_status": driver.availability_status or "Available",
        "available_at": _fmt_datetime(driver.available_at),
    }


def in_app_content(event_type, payload, *, for_dispatcher=False):
    """Return (notification type, title, message) for one recipient."""
    route = (
        f"{payload.get('origin_address')} → {payload.get('destination_address')}"
    )

    if event_type == EventType.LOAD_SUBMITTED:
        if for_dispatcher:
            return (
                Notification.Type.NEW_LOAD,
                "New Load Request",
                f"New load request: {route}. Assign a driver.",
            )
        return (
            Notification.Type.LOAD_SUBMITTED,
            "Load Request Submitted",
            f"Your load request {route} has been received.",
        )

    if event_type == EventType.LOAD_APPROVED:
        return (
            Notification.Type.LOAD_APPROVED,
            "Load Approved",
            f"Your load {route} has been approved. Driver: "
            f"{payload.get('driver_name') or 'Assigned'}, "
            f"Truck #{payload.get('truck_number') or 'Assigned'}.",
        )

    if event_type == EventType.STATUS_IN_TRANSIT:
        return (
            Notification.Type.STATUS_IN_TRANSIT,
            "Shipment In Transit",
            f"Your shipment {route} has been picked up and is on the way.",
        )

    if event_type == EventType.STATUS_DELIVERED:
        return (
            Notification.Type.STATUS_DELIVERED,
            "Shipment Delivered",
            f"Your shipment to {payload.get('destination_address')} "
            "has been delivered.",
        )

    if event_type == EventType.ETA_UPDATED:
        eta = payload.get("eta") or "to be confirmed"
        return (
            Notification.Type.ETA_UPDATED,
            "ETA Updated",
            f"New estimated arrival for {route}: {eta}.",
        )

    if event_type == EventType.DRIVER_AVAILABILITY:
        message = (
            f"{payload.get('driver_name')} is now "
            f"{payload.get('availability_status')}"
        )
        if payload.get("available_at"):
            message += f" (available again {payload['available_at']})"
        return (
            Notification.Type.DRIVER_AVAILABILITY,
            "Driver Availability Changed",
            message + ".",
        )

    if event_type == EventType.PAYMENT_RECEIVED:
        if for_dispatcher:
            return (
                Notification.Type.PAYMENT_RECEIVED,
                "Payment Received",
                f"Payment of {payload.get('price')} received for load: {route}",
            )
        return (
            Notification.Type.PAYMENT_CONFIRMED,
            "Payment Successful",
            f"Your payment of {payload.get('price')} for the shipment to "
            f"{payload.get('destination_address')} was successful.",
        )

    raise ValueError(f"Unknown event type: {event_type}")


def push_message(event_type, payload, *, for_dispatcher=False) -> dict:
    """Payload understood by the service worker (title, body, load_id)."""
    _, title, body = in_app_content(event_type, payload, for_dispatcher=for_dispatcher)
    message = {"title": title, "body": body}
    if payload.get("load_id"):
        message["load_id"] = payload["load_id"]
    return message
