"""
Notification fan-out: email, in-app rows and web push.

Each channel is attempted independently. A failing channel is logged and
recorded on the DispatchReport; it never stops the other channels and never
raises to the caller.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError, transaction
from pywebpush import WebPushException

from freight.models import Notification
from freight.services import push
from freight.services.emails import render_email
from freight.services.events import in_app_content, push_message
from freight.services.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

User = get_user_model()


@dataclass
class DispatchReport:
    event_type: str
    recipients: int = 0
    email_sent: int = 0
    email_failed: int = 0
    in_app_created: int = 0
    in_app_failed: int = 0
    push_sent: int = 0
    push_failed: int = 0
    push_removed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def degraded(self):
        return bool(self.errors)


class NotificationDispatcher:
    """Sends one event to its primary recipient and, optionally, dispatch."""

    def resolve_dispatchers(self):
        return User.objects.filter(role=User.Role.DISPATCHER, is_active=True)

    def notify(
        self,
        event_type,
        payload,
        primary_recipient=None,
        notify_dispatchers=False,
        recipient_email=None,
        load=None,
    ) -> DispatchReport:
        report = DispatchReport(event_type=str(event_type))

        # (user, is_dispatcher_copy)
        recipients = []
        if primary_recipient is not None:
            recipients.append((primary_recipient, False))
        if notify_dispatchers:
            primary_pk = getattr(primary_recipient, "pk", None)
            try:
                dispatchers = list(self.resolve_dispatchers())
            except DatabaseError as exc:
                logger.exception("Could not resolve dispatchers for %s", event_type)
                report.errors.append(f"dispatchers: {exc}")
                dispatchers = []
            recipients.extend((d, True) for d in dispatchers if d.pk != primary_pk)
        report.recipients = len(recipients)

        # 1. Email to the primary recipient
        address = recipient_email or getattr(primary_recipient, "email", None)
        if address:
            self._send_email(report, event_type, payload, address, for_dispatcher=False)

        # 2. Email to the dispatch team
        for user, for_dispatcher in recipients:
            if for_dispatcher and user.email:
                self._send_email(
                    report, event_type, payload, user.email, for_dispatcher=True
                )

        # 3. In-app rows
        for user, for_dispatcher in recipients:
            self._create_in_app(report, event_type, payload, user, for_dispatcher, load)

        # 4. Web push
        if push.push_enabled():
            for user, for_dispatcher in recipients:
                self._push(report, event_type, payload, user, for_dispatcher)

        if report.degraded:
            logger.warning(
                "Dispatch of %s degraded: %s", event_type, "; ".join(report.errors)
            )
        else:
            logger.info(
                "Dispatched %s to %d recipient(s), push sent=%d failed=%d",
                event_type,
                report.recipients,
                report.push_sent,
                report.push_failed,
            )
        return report

    def _send_email(self, report, event_type, payload, address, *, for_dispatcher):
        try:
            subject, text, html = render_email(
                event_type, payload, for_dispatcher=for_dispatcher
            )
            message = EmailMultiAlternatives(
                subject, text, settings.DEFAULT_FROM_EMAIL, [address]
            )
            message.attach_alternative(html, "text/html")
            message.send()
        except Exception as exc:
            logger.exception("Email for %s to %s failed", event_type, address)
            report.email_failed += 1
            report.errors.append(f"email to {address}: {exc}")
        else:
            report.email_sent += 1

    def _create_in_app(self, report, event_type, payload, user, for_dispatcher, load):
        try:
            notification_type, title, message = in_app_content(
                event_type, payload, for_dispatcher=for_dispatcher
            )
            # savepoint: a failed insert must not poison the caller's transaction
            with transaction.atomic():
                Notification.objects.create(
                    user=user,
                    type=notification_type,
                    title=title,
                    message=message,
                    load=load,
                )
        except (DatabaseError, ValueError) as exc:
            logger.exception("In-app notification for user %s failed", user.pk)
            report.in_app_failed += 1
            report.errors.append(f"in-app for user {user.pk}: {exc}")
        else:
            report.in_app_created += 1

    def _push(self, report, event_type, payload, user, for_dispatcher):
        message = push_message(event_type, payload, for_dispatcher=for_dispatcher)
        try:
            subscriptions = list(user.push_subscriptions.all())
        except DatabaseError as exc:
            logger.exception("Could not load push subscriptions for user %s", user.pk)
            report.errors.append(f"push lookup for user {user.pk}: {exc}")
            return

        for subscription in subscriptions:
            try:
                push.send_push(subscription, message)
            except WebPushException as exc:
                report.push_failed += 1
                if push.is_gone(exc):
                    self._remove_subscription(report, subscription)
                else:
                    logger.warning("Push to %s failed: %s", subscription.pk, exc)
                    report.errors.append(f"push {subscription.pk}: {exc}")
            except Exception as exc:
                logger.exception("Push to %s failed", subscription.pk)
                report.push_failed += 1
                report.errors.append(f"push {subscription.pk}: {exc}")
            else:
                report.push_sent += 1

    def _remove_subscription(self, report, subscription):
        pk = subscription.pk
        logger.info("Removing expired push endpoint %s", pk)
        try:
            with transaction.atomic():
                subscription.delete()
        except DatabaseError as exc:
            logger.exception("Could not remove expired push endpoint %s", pk)
            report.errors.append(f"push cleanup {pk}: {exc}")
        else:
            report.push_removed += 1


default_dispatcher = NotificationDispatcher()


# ---------------------------------------------------------------------------
# Inbox operations
# ---------------------------------------------------------------------------


def unread_count(user) -> int:
    return Notification.objects.filter(user=user, read=False).count()


def mark_read(user, notification_id) -> Notification:
    """Mark one of the user's own notifications as read."""
    try:
        notification = Notification.objects.get(pk=notification_id)
    except Notification.DoesNotExist:
        raise AuthorizationError("Notification not found.")
    if notification.user_id != user.pk:
        raise AuthorizationError("You can only update your own notifications.")
    if not notification.read:
        notification.read = True
        notification.save(update_fields=["read"])
    return notification


def mark_all_read(user) -> int:
    return Notification.objects.filter(user=user, read=False).update(read=True)
