"""
Transactional email content.

`render_email` turns an event type plus a load payload into
(subject, text_body, html_body). The HTML shell lives in
templates/freight/emails/notification.html; per-event wording lives here.
"""

from django.template.loader import render_to_string
from django.utils.html import strip_tags

from freight.services.events import EventType

FOOTER = "Road Runner Express - Fast, Reliable, On Time"
DISPATCH_FOOTER = "Road Runner Express Dispatch System"

# event -> (subject, heading, intro, closing, badge)
CLIENT_CONTENT = {
    EventType.LOAD_SUBMITTED: (
        "Load Request #{reference} Received",
        "Load Request Received!",
        "Thank you for submitting your load request. Our dispatch team is "
        "reviewing your shipment and will assign a driver shortly.",
        "We'll notify you once your load is approved and a driver is assigned.",
        None,
    ),
    EventType.LOAD_APPROVED: (
        "Load #{reference} Approved - Driver Assigned",
        "Great News! Your Load is Approved",
        "Your shipment has been approved and a driver has been assigned.",
        "We'll send you another update when your shipment is picked up and "
        "in transit.",
        None,
    ),
    EventType.STATUS_IN_TRANSIT: (
        "Load #{reference} is Now In Transit",
        "Your Shipment is On The Move!",
        "Your shipment has been picked up and is now in transit to its "
        "destination.",
        "We'll notify you when your shipment has been delivered.",
        "IN TRANSIT",
    ),
    EventType.STATUS_DELIVERED: (
        "Load #{reference} Has Been Delivered",
        "Delivery Complete!",
        "Your shipment has been successfully delivered to its destination.",
        "Thank you for choosing Road Runner Express! We appreciate your "
        "business.",
        "DELIVERED",
    ),
    EventType.ETA_UPDATED: (
        "Load #{reference} - Updated Arrival Time",
        "Your ETA Has Changed",
        "Dispatch has updated the estimated arrival time for your shipment.",
        "We'll keep you posted as your shipment progresses.",
        None,
    ),
    EventType.PAYMENT_RECEIVED: (
        "Payment Received for Load #{reference}",
        "Payment Successful",
        "We've received your payment for this shipment.",
        "Thank you for choosing Road Runner Express!",
        "PAID",
    ),
}

DISPATCHER_CONTENT = {
    EventType.LOAD_SUBMITTED: (
        "New Load Request #{reference}",
        "New Load Alert!",
        "A new load has been submitted and requires your attention.",
        "Please review and assign a driver at your earliest convenience.",
        None,
    ),
    EventType.DRIVER_AVAILABILITY: (
        "Driver Availability: {driver_name} is {availability_status}",
        "Driver Availability Changed",
        "{driver_name} updated their availability to {availability_status}.",
        "Check the drivers page before assigning new loads.",
        None,
    ),
    EventType.PAYMENT_RECEIVED: (
        "Payment Received for Load #{reference}",
        "Payment Received",
        "A client payment has been received.",
        "No action is needed.",
        "PAID",
    ),
}

GENERIC_CONTENT = (
    "Road Runner Express Notification",
    "Notification",
    "There is an update on your account.",
    "",
    None,
)


def _detail_rows(payload, for_dispatcher):
    rows = []
    if payload.get("reference"):
        rows.append(("Reference ID", f"#{payload['reference']}"))
    if for_dispatcher and payload.get("client_email"):
        rows.append(("Client Email", payload["client_email"]))
    if payload.get("origin_address"):
        rows.append(("Pickup", payload["origin_address"]))
    if payload.get("destination_address"):
        rows.append(("Delivery", payload["destination_address"]))
    if payload.get("pickup_date"):
        rows.append(("Scheduled Pickup", payload["pickup_date"]))
    if payload.get("trailer_type"):
        rows.append(("Trailer Type", payload["trailer_type"]))
    if payload.get("weight_lbs"):
        rows.append(("Weight", f"{payload['weight_lbs']:,} lbs"))
    if payload.get("driver_name"):
        rows.append(("Driver", payload["driver_name"]))
    if payload.get("truck_number"):
        rows.append(("Truck #", payload["truck_number"]))
    if payload.get("eta"):
        rows.append(("ETA", payload["eta"]))
    if payload.get("price"):
        rows.append(("Amount", payload["price"]))
    if payload.get("available_at"):
        rows.append(("Available Again", payload["available_at"]))
    return rows


def render_email(event_type, payload, *, for_dispatcher=False):
    table = DISPATCHER_CONTENT if for_dispatcher else CLIENT_CONTENT
    subject, heading, intro, closing, badge = table.get(event_type, GENERIC_CONTENT)
    values = {key: value for key, value in payload.items() if value is not None}
    values.setdefault("reference", "")
    subject = subject.format_map(_Defaults(values))
    intro = intro.format_map(_Defaults(values))

    html = render_to_string(
        "freight/emails/notification.html",
        {
            "heading": heading,
            "intro": intro,
            "rows": _detail_rows(payload, for_dispatcher),
            "closing": closing,
            "badge": badge,
            "footer": DISPATCH_FOOTER if for_dispatcher else FOOTER,
        },
    )
    return subject, strip_tags(html), html


def render_dispatcher_invite(invite, signup_url):
    html = render_to_string(
        "freight/emails/notification.html",
        {
            "heading": "You're Invited!",
            "intro": "You've been invited to join Road Runner Express as a "
            "Dispatcher. This invitation expires on "
            f"{invite.expires_at:%B %d, %Y}.",
            "rows": [("Sign up", signup_url)],
            "closing": "If you weren't expecting this invitation, you can "
            "ignore this email.",
            "badge": None,
            "footer": FOOTER,
        },
    )
    subject = "You've been invited to join Road Runner Express as a Dispatcher"
    return subject, strip_tags(html), html


class _Defaults(dict):
    """format_map helper that leaves unknown placeholders blank."""

    def __missing__(self, key):
        return ""
