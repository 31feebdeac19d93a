"""
Payment gate for loads that require payment (Stripe Checkout).

Payment is recorded against a load; it never blocks a status transition.
"""

import json
import logging

import stripe
from django.conf import settings
from django.utils import timezone
from stripe import SignatureVerificationError, StripeError

from freight.models import Load
from freight.policies.roles import is_client
from freight.services.events import AUDIENCE, EventType, load_payload
from freight.services.exceptions import AuthorizationError, PaymentError
from freight.services.notifications import default_dispatcher

logger = logging.getLogger(__name__)


def _get_stripe_client() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentError("Payment system not configured.")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def check_checkout_allowed(user, load: Load) -> None:
    """Raise unless `user` may open a checkout session for `load`."""
    if not is_client(user) or load.client_id != user.pk:
        raise AuthorizationError("You can only pay for your own loads.")
    if not load.payment_required or load.payment_status != Load.PaymentStatus.PENDING:
        raise PaymentError("Payment is not required for this load.")
    if not load.price_cents or load.price_cents <= 0:
        raise PaymentError("Invalid price for this load.")


def can_create_checkout(user, load: Load) -> bool:
    try:
        check_checkout_allowed(user, load)
    except (AuthorizationError, PaymentError):
        return False
    return True


def _get_or_create_customer(user):
    if not user.email:
        return None
    existing = stripe.Customer.list(email=user.email, limit=1)
    if existing.data:
        return existing.data[0].id
    customer = stripe.Customer.create(
        email=user.email, metadata={"user_id": str(user.pk)}
    )
    return customer.id


def create_checkout_session(user, load: Load, origin=None) -> str:
    """Open a Stripe Checkout session and return its URL."""
    check_checkout_allowed(user, load)
    _get_stripe_client()
    origin = origin or settings.SITE_URL

    try:
        session = stripe.checkout.Session.create(
            customer=_get_or_create_customer(user),
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": "Load Shipment Payment",
                            "description": f"{load.origin_address} → {load.destination_address}",
                        },
                        "unit_amount": load.price_cents,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=f"{origin}/loads/{load.pk}/?payment=success",
            cancel_url=f"{origin}/loads/{load.pk}/?payment=cancelled",
            metadata={"load_id": str(load.pk), "user_id": str(user.pk)},
        )
    except StripeError as e:
        logger.error("payments: checkout session failed load=%s error=%s", load.pk, e)
        raise PaymentError("Could not start checkout. Please try again.") from e

    Load.objects.filter(pk=load.pk).update(
        payment_intent_id=session.id, updated_at=timezone.now()
    )
    logger.info("payments: checkout session %s opened for load %s", session.id, load.pk)
    return session.url


def handle_stripe_webhook(payload: bytes, signature: str | None) -> dict:
    """
    Verify and apply a Stripe webhook event.

    Without STRIPE_WEBHOOK_SECRET the event is parsed unverified (local
    testing only) and a warning is logged.
    """
    secret = settings.STRIPE_WEBHOOK_SECRET
    if secret:
        if not signature:
            raise PaymentError("Missing stripe-signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except (SignatureVerificationError, ValueError) as e:
            logger.warning("payments: webhook signature verification failed: %s", e)
            raise PaymentError("Invalid signature") from e
    else:
        logger.warning("payments: webhook signature not verified - secret not set")
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise PaymentError("Invalid payload") from e

    event_type = event["type"]
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    load_id = metadata.get("load_id")

    if event_type == "checkout.session.completed" and load_id:
        mark_paid(load_id, session.get("payment_intent") or session.get("id"))
    elif event_type == "checkout.session.expired" and load_id:
        mark_failed(load_id)
    else:
        logger.info("payments: ignoring webhook %s", event_type)

    return {"received": True}


def mark_paid(load_id, payment_intent_id, *, notifier=None) -> bool:
    """
    pending -> paid, then tell the client and every dispatcher.

    Replayed events find the load no longer pending and do nothing.
    """
    changed = Load.objects.filter(
        pk=load_id,
        payment_required=True,
        payment_status=Load.PaymentStatus.PENDING,
    ).update(
        payment_status=Load.PaymentStatus.PAID,
        paid_at=timezone.now(),
        payment_intent_id=payment_intent_id,
        updated_at=timezone.now(),
    )
    if not changed:
        logger.info("payments: load %s not pending, paid event ignored", load_id)
        return False

    logger.info("payments: load %s marked as paid", load_id)
    load = Load.objects.select_related("client").get(pk=load_id)
    (notifier or default_dispatcher).notify(
        EventType.PAYMENT_RECEIVED,
        load_payload(load),
        primary_recipient=load.client,
        notify_dispatchers=AUDIENCE[EventType.PAYMENT_RECEIVED].notify_dispatchers,
        load=load,
    )
    return True


def mark_failed(load_id) -> bool:
    changed = Load.objects.filter(
        pk=load_id,
        payment_required=True,
        payment_status=Load.PaymentStatus.PENDING,
    ).update(payment_status=Load.PaymentStatus.FAILED, updated_at=timezone.now())
    if changed:
        logger.info("payments: payment failed/expired for load %s", load_id)
    return bool(changed)
