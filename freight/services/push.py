"""Web push delivery through pywebpush (VAPID)."""

import json
import logging

from django.conf import settings
from pywebpush import WebPushException, webpush

from freight.models import PushSubscription
from freight.services.exceptions import ServiceError

logger = logging.getLogger(__name__)

# Push services answer with these when a subscription no longer exists
GONE_STATUS_CODES = (404, 410)


def push_enabled() -> bool:
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def send_push(subscription, message: dict) -> None:
    """Send one message to one PushSubscription. Raises WebPushException."""
    webpush(
        subscription_info=subscription.as_subscription_info(),
        data=json.dumps(message),
        vapid_private_key=settings.VAPID_PRIVATE_KEY,
        vapid_claims={"sub": f"mailto:{settings.VAPID_CLAIMS_EMAIL}"},
    )


def is_gone(exc: WebPushException) -> bool:
    response = getattr(exc, "response", None)
    return response is not None and response.status_code in GONE_STATUS_CODES


def subscribe(user, endpoint, p256dh, auth):
    """Register (or refresh the keys of) a device for `user`."""
    if not (endpoint and p256dh and auth):
        raise ServiceError("Push subscription is missing its endpoint or keys.")
    subscription, created = PushSubscription.objects.update_or_create(
        user=user,
        endpoint=endpoint,
        defaults={"p256dh": p256dh, "auth": auth},
    )
    logger.info(
        "%s push subscription %s for user %s",
        "Created" if created else "Refreshed",
        subscription.pk,
        user.pk,
    )
    return subscription


def unsubscribe(user, endpoint) -> int:
    deleted, _ = PushSubscription.objects.filter(user=user, endpoint=endpoint).delete()
    return deleted
