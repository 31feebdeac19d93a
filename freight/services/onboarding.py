"""
Account onboarding: provisioned driver/client records, account linking
and dispatcher invitations.

Dispatchers create Driver and Client records before the person has an
account. When someone signs up with the same email, `link_account`
attaches their user to the record and gives the account the matching role.
"""

import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.mail import EmailMultiAlternatives
from django.db import transaction
from django.utils import timezone

from freight.models import Client, DispatcherInvite, Driver
from freight.policies.roles import is_client, is_dispatcher
from freight.services.emails import render_dispatcher_invite
from freight.services.exceptions import (
    AuthorizationError,
    LoadValidationError,
    ServiceError,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def _normalize_email(email) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise LoadValidationError("Email is required.")
    return email


def _require_dispatcher(actor, what):
    if not is_dispatcher(actor):
        raise AuthorizationError(f"Only dispatchers can {what}.")


def _save_profile(instance):
    try:
        instance.full_clean(exclude=["user"])
    except ValidationError as exc:
        raise LoadValidationError("; ".join(exc.messages)) from exc
    instance.save()
    return instance


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


def provision_driver(dispatcher, *, email, **fields) -> Driver:
    """Create an unlinked driver record, linking it straight away if possible."""
    _require_dispatcher(dispatcher, "add drivers")
    email = _normalize_email(email)
    if Driver.objects.filter(email=email, is_active=True).exists():
        raise LoadValidationError(f"A driver with email {email} already exists.")

    driver = Driver(email=email, **fields)
    driver.user = _unlinked_user(email, Driver)
    if driver.user is not None:
        _grant_role(driver.user, User.Role.DRIVER)
    _save_profile(driver)
    logger.info("Driver %s provisioned by dispatcher %s", driver.pk, dispatcher.pk)
    return driver


def provision_client(dispatcher, *, email, **fields) -> Client:
    _require_dispatcher(dispatcher, "add clients")
    email = _normalize_email(email)
    if Client.objects.filter(email=email, is_active=True).exists():
        raise LoadValidationError(f"A client with email {email} already exists.")

    client = Client(email=email, **fields)
    client.user = _unlinked_user(email, Client)
    if client.user is not None:
        _grant_role(client.user, User.Role.CLIENT)
    _save_profile(client)
    logger.info("Client %s provisioned by dispatcher %s", client.pk, dispatcher.pk)
    return client


def _unlinked_user(email, model):
    """An existing non-dispatcher account with `email` not yet linked to `model`."""
    user = User.objects.filter(email__iexact=email).first()
    if user is None or is_dispatcher(user) or model.objects.filter(user=user).exists():
        return None
    return user


def _grant_role(user, role):
    if user.role != role:
        user.role = role
        user.save(update_fields=["role", "updated_at"])


def link_account(user):
    """
    Attach `user` to an unlinked driver or client record with the same email.

    Returns the linked record, or None when nothing matches. Dispatchers are
    never re-roled.
    """
    if not user.email or is_dispatcher(user):
        return None

    with transaction.atomic():
        for model, role in ((Driver, User.Role.DRIVER), (Client, User.Role.CLIENT)):
            record = (
                model.objects.select_for_update()
                .filter(email__iexact=user.email, is_active=True, user__isnull=True)
                .first()
            )
            if record is None:
                continue
            if model.objects.filter(user=user).exists():
                return None
            record.user = user
            record.save(update_fields=["user", "updated_at"])
            _grant_role(user, role)
            logger.info("Linked user %s to %s %s", user.pk, model.__name__, record.pk)
            return record
    return None


CLIENT_PROFILE_FIELDS = ("first_name", "last_name", "phone_number", "address")


def update_client_profile(user, **fields) -> Client:
    """A client edits the contact details on their own linked record."""
    if not is_client(user):
        raise AuthorizationError("Only clients can edit a client profile.")
    unknown = set(fields) - set(CLIENT_PROFILE_FIELDS)
    if unknown:
        raise LoadValidationError(
            f"Unknown profile fields: {', '.join(sorted(unknown))}"
        )
    client = Client.objects.filter(user=user, is_active=True).first()
    if client is None:
        raise LoadValidationError("No client record is linked to this account.")

    for name, value in fields.items():
        value = (value or "").strip()
        if not value:
            raise LoadValidationError(
                f"{name.replace('_', ' ').capitalize()} is required."
            )
        setattr(client, name, value)
    _save_profile(client)
    logger.info("Client %s updated their profile", client.pk)
    return client


def deactivate_driver(dispatcher, driver_id) -> Driver:
    """Soft-delete: loads keep pointing at the driver's account."""
    _require_dispatcher(dispatcher, "remove drivers")
    updated = Driver.objects.filter(pk=driver_id).update(
        is_active=False, updated_at=timezone.now()
    )
    if not updated:
        raise LoadValidationError("Driver not found.")
    logger.info("Driver %s deactivated by dispatcher %s", driver_id, dispatcher.pk)
    return Driver.objects.get(pk=driver_id)


def deactivate_client(dispatcher, client_id) -> Client:
    _require_dispatcher(dispatcher, "remove clients")
    updated = Client.objects.filter(pk=client_id).update(
        is_active=False, updated_at=timezone.now()
    )
    if not updated:
        raise LoadValidationError("Client not found.")
    logger.info("Client %s deactivated by dispatcher %s", client_id, dispatcher.pk)
    return Client.objects.get(pk=client_id)


# ---------------------------------------------------------------------------
# Dispatcher invites
# ---------------------------------------------------------------------------


def create_dispatcher_invite(dispatcher, email, *, signup_url=None) -> DispatcherInvite:
    """
    Invite a new dispatcher by email.

    Only one unused, unexpired invite may exist per address. The invite is
    saved even when the email cannot be sent; the error is logged.
    """
    _require_dispatcher(dispatcher, "invite dispatchers")
    email = _normalize_email(email)

    if User.objects.filter(email__iexact=email, role=User.Role.DISPATCHER).exists():
        raise LoadValidationError(f"{email} is already a dispatcher.")
    if DispatcherInvite.objects.filter(
        email=email, used=False, expires_at__gt=timezone.now()
    ).exists():
        raise LoadValidationError(f"An active invite for {email} already exists.")

    invite = DispatcherInvite.objects.create(
        email=email,
        token=secrets.token_urlsafe(32),
        invited_by=dispatcher,
        expires_at=timezone.now() + timedelta(days=settings.DISPATCHER_INVITE_TTL_DAYS),
    )
    logger.info("Dispatcher invite %s created for %s", invite.pk, email)

    signup_url = signup_url or f"{settings.SITE_URL}/invites/{invite.token}/"
    subject, text, html = render_dispatcher_invite(invite, signup_url)
    message = EmailMultiAlternatives(subject, text, settings.DEFAULT_FROM_EMAIL, [email])
    message.attach_alternative(html, "text/html")
    try:
        message.send()
    except Exception:
        logger.exception("Dispatcher invite email to %s failed", email)
    return invite


def validate_invite_token(token) -> DispatcherInvite:
    try:
        invite = DispatcherInvite.objects.get(token=token)
    except DispatcherInvite.DoesNotExist:
        raise ServiceError("Invalid invitation link.")
    if invite.used:
        raise ServiceError("This invitation has already been used.")
    if invite.is_expired:
        raise ServiceError("This invitation has expired.")
    return invite


def accept_dispatcher_invite(token, user) -> DispatcherInvite:
    """Consume the invite and make `user` a dispatcher."""
    invite = validate_invite_token(token)
    if (user.email or "").lower() != invite.email:
        raise AuthorizationError("This invitation was sent to a different email.")

    with transaction.atomic():
        consumed = DispatcherInvite.objects.filter(pk=invite.pk, used=False).update(
            used=True, used_at=timezone.now()
        )
        if not consumed:
            raise ServiceError("This invitation has already been used.")
        _grant_role(user, User.Role.DISPATCHER)

    logger.info("User %s accepted dispatcher invite %s", user.pk, invite.pk)
    invite.refresh_from_db()
    return invite
