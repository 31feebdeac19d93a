"""
Load lifecycle manager.

Owns every change to `Load.status`:

    Pending --assign--> Assigned --arrive--> Arrived --load--> Loaded
    Loaded --depart--> In-Transit --arrive_at_delivery--> Arrived at Delivery
    {In-Transit | Arrived at Delivery} --deliver--> Delivered

Arrived at Delivery is optional: drivers may deliver straight from
In-Transit. Every other step consumes exactly its predecessor.

Each operation runs in three phases:

1. Guards: role and ownership, then payload validation. Nothing is written
   if either fails.
2. Effect: one conditional UPDATE matching the load id and the expected
   predecessor status. Zero rows changed means the load was not in that
   state (or a concurrent request got there first) -> InvalidTransition.
3. Post-effect: audience resolution and notification dispatch. Failures
   here are returned as `TransitionResult.warning` and never undo phase 2.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from freight.models import Driver, Load
from freight.policies.roles import is_client, is_dispatcher, is_driver
from freight.services import assignment, signatures, store
from freight.services.events import AUDIENCE, EventType, driver_payload, load_payload
from freight.services.exceptions import (
    AuthorizationError,
    DispatchDegraded,
    InvalidTransition,
    LoadValidationError,
)
from freight.services.notifications import DispatchReport, default_dispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    name: str
    predecessors: tuple
    target: str
    timestamp_field: str
    event: Optional[str] = None


TRANSITIONS = {
    t.name: t
    for t in (
        Transition(
            "assign",
            (Load.Status.PENDING,),
            Load.Status.ASSIGNED,
            "assigned_at",
            EventType.LOAD_APPROVED,
        ),
        Transition("arrive", (Load.Status.ASSIGNED,), Load.Status.ARRIVED, "arrived_at"),
        Transition("load", (Load.Status.ARRIVED,), Load.Status.LOADED, "loaded_at"),
        Transition(
            "depart",
            (Load.Status.LOADED,),
            Load.Status.IN_TRANSIT,
            "in_transit_at",
            EventType.STATUS_IN_TRANSIT,
        ),
        Transition(
            "arrive_at_delivery",
            (Load.Status.IN_TRANSIT,),
            Load.Status.ARRIVED_AT_DELIVERY,
            "arrived_at_delivery_at",
        ),
        Transition(
            "deliver",
            (Load.Status.IN_TRANSIT, Load.Status.ARRIVED_AT_DELIVERY),
            Load.Status.DELIVERED,
            "delivered_at",
            EventType.STATUS_DELIVERED,
        ),
    )
}

DRIVER_TRANSITIONS = [name for name in TRANSITIONS if name != "assign"]

ACTION_LABELS = {
    "arrive": "mark arrival at pickup",
    "load": "mark loaded",
    "depart": "start transit",
    "arrive_at_delivery": "mark arrival at delivery",
    "deliver": "mark delivered",
}

# Statuses in which a dispatcher may edit an existing assignment
EDITABLE_STATUSES = tuple(Load.ACTIVE_STATUSES)

SUBMIT_FIELDS = (
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
)


@dataclass
class TransitionResult:
    load: Load
    action: str
    dispatch: Optional[DispatchReport] = None
    warning: Optional[DispatchDegraded] = None

    @property
    def degraded(self):
        return self.warning is not None


# ---------------------------------------------------------------------------
# Post-effect
# ---------------------------------------------------------------------------


def _dispatch(event_type, load, notifier, *, payload=None, primary=None):
    """Send `event_type` to its audience. Never raises."""
    audience = AUDIENCE[event_type]
    notifier = notifier or default_dispatcher
    try:
        if primary is None and audience.notify_client and load is not None:
            primary = load.client
        report = notifier.notify(
            event_type,
            payload if payload is not None else load_payload(load),
            primary_recipient=primary,
            notify_dispatchers=audience.notify_dispatchers,
            load=load,
        )
    except Exception as exc:
        logger.exception("Notification dispatch for %s crashed", event_type)
        report = DispatchReport(event_type=str(event_type), errors=[str(exc)])

    warning = DispatchDegraded(report) if report.degraded else None
    return report, warning


def _committed_load(load_id):
    """Re-read the load after the conditional update committed."""
    return store.get_load(load_id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def submit_load(client, *, notifier=None, **fields) -> TransitionResult:
    """Create a Pending load for `client` and announce it to dispatch."""
    if not is_client(client):
        raise AuthorizationError("Only clients can request loads.")

    unknown = set(fields) - set(SUBMIT_FIELDS)
    if unknown:
        raise LoadValidationError(f"Unknown load fields: {', '.join(sorted(unknown))}")

    load = Load(client=client, status=Load.Status.PENDING, **fields)
    for name in ("origin_address", "destination_address"):
        setattr(load, name, (getattr(load, name) or "").strip())
    if load.payment_required:
        load.payment_status = Load.PaymentStatus.PENDING

    try:
        load.full_clean()
    except ValidationError as exc:
        raise LoadValidationError(_flatten(exc)) from exc

    with transaction.atomic():
        load.save()
    logger.info("Load %s submitted by client %s", load.pk, client.pk)

    report, warning = _dispatch(EventType.LOAD_SUBMITTED, load, notifier)
    return TransitionResult(load=load, action="submit", dispatch=report, warning=warning)


def assign_driver(
    dispatcher,
    load_id,
    driver_id,
    truck_number,
    price_cents,
    eta=None,
    *,
    notifier=None,
) -> TransitionResult:
    """
    Assign a driver to a Pending load, or edit an existing assignment.

    The first assignment stamps `assigned_at` and tells the client the load
    is approved. Later calls on an Assigned-or-later load only rewrite the
    assignment fields; the client hears about it only if the ETA changed.
    """
    if not is_dispatcher(dispatcher):
        raise AuthorizationError("Only dispatchers can assign drivers.")

    truck_number = assignment.validate_truck_number(truck_number)
    price_cents = assignment.validate_price_cents(price_cents)

    load = store.get_load(load_id)
    driver = assignment.get_assignable_driver(
        driver_id, current_driver_user_id=load.driver_id
    )
    changes = {
        "driver_id": driver.user_id,
        "driver_name": driver.full_name,
        "truck_number": truck_number,
        "price_cents": price_cents,
        "eta": eta,
    }

    if load.status == Load.Status.PENDING:
        step = TRANSITIONS["assign"]
        changed = store.compare_and_set(
            load.pk,
            step.predecessors,
            status=step.target,
            **{step.timestamp_field: timezone.now()},
            **changes,
        )
        if not changed:
            raise _lost_race(load.pk, "assign a driver")
        logger.info(
            "Load %s assigned to driver %s by dispatcher %s",
            load.pk,
            driver.pk,
            dispatcher.pk,
        )
        load = _committed_load(load.pk)
        report, warning = _dispatch(step.event, load, notifier)
        return TransitionResult(load=load, action="assign", dispatch=report, warning=warning)

    if load.status not in EDITABLE_STATUSES:
        raise InvalidTransition(
            f"Cannot edit the assignment of a {load.get_status_display()} load.",
            current_status=load.status,
        )

    # the ETA notification is decided from this read, so the update must
    # still see it
    previous_eta = load.eta
    changed = store.compare_and_set(
        load.pk, (load.status,), match={"eta": previous_eta}, **changes
    )
    if not changed:
        race = _lost_race(load.pk, "edit the assignment")
        if race.current_status == load.status:
            race = InvalidTransition(
                "The assignment was changed by someone else. Reload and try again.",
                current_status=load.status,
            )
        raise race
    logger.info("Assignment of load %s edited by dispatcher %s", load.pk, dispatcher.pk)
    load = _committed_load(load.pk)

    if previous_eta == load.eta:
        return TransitionResult(load=load, action="edit_assignment")
    report, warning = _dispatch(EventType.ETA_UPDATED, load, notifier)
    return TransitionResult(
        load=load, action="edit_assignment", dispatch=report, warning=warning
    )


def advance(driver, load_id, transition, signature=None, *, notifier=None) -> TransitionResult:
    """
    Move a load one step forward on behalf of its assigned driver.

    `transition` is one of arrive, load, depart, arrive_at_delivery or
    deliver. `signature` (a data URL) is only accepted for deliver.
    """
    step = TRANSITIONS.get(transition)
    if step is None or transition not in DRIVER_TRANSITIONS:
        raise LoadValidationError(f"Unknown status action: {transition}")

    if not is_driver(driver):
        raise AuthorizationError("Only drivers can update load status.")
    load = store.get_load(load_id)
    if load.driver_id != driver.pk:
        raise AuthorizationError("This load is not assigned to you.")

    if signature and transition != "deliver":
        raise LoadValidationError("A signature can only be captured on delivery.")

    now = timezone.now()
    changes = {"status": step.target, step.timestamp_field: now}

    signature_name = None
    if signature:
        content, ext = signatures.decode_signature(signature)
        signature_name = signatures.save_signature(load.pk, content, ext)
        changes["client_signature_url"] = signature_name
        changes["signature_timestamp"] = now

    changed = False
    try:
        changed = store.compare_and_set(
            load.pk, step.predecessors, match={"driver_id": driver.pk}, **changes
        )
    finally:
        # the stored image only survives if the row now points at it
        if signature_name and not changed:
            signatures.discard_signature(signature_name)
    if not changed:
        raise _lost_race(load.pk, ACTION_LABELS[transition])

    logger.info("Load %s: %s by driver %s", load.pk, transition, driver.pk)
    load = _committed_load(load.pk)

    if step.event is None:
        return TransitionResult(load=load, action=transition)
    report, warning = _dispatch(step.event, load, notifier)
    return TransitionResult(load=load, action=transition, dispatch=report, warning=warning)


def update_driver_availability(
    actor, driver_id, availability_status, available_at=None, *, notifier=None
) -> TransitionResult:
    """
    Change a driver's availability and tell every dispatcher.

    Drivers may update their own record; dispatchers may update anyone's.
    """
    try:
        driver = Driver.objects.get(pk=driver_id)
    except (Driver.DoesNotExist, ValueError, TypeError):
        raise LoadValidationError("Driver not found.")

    own_record = is_driver(actor) and driver.user_id == actor.pk
    if not (own_record or is_dispatcher(actor)):
        raise AuthorizationError("You cannot change this driver's availability.")

    if availability_status not in Driver.Availability.values:
        raise LoadValidationError(f"Unknown availability: {availability_status}")
    if availability_status == Driver.Availability.AVAILABLE:
        available_at = None

    driver.availability_status = availability_status
    driver.available_at = available_at
    driver.save(update_fields=["availability_status", "available_at", "updated_at"])
    logger.info("Driver %s is now %s", driver.pk, availability_status)

    report, warning = _dispatch(
        EventType.DRIVER_AVAILABILITY,
        None,
        notifier,
        payload=driver_payload(driver),
    )
    return TransitionResult(
        load=None, action="availability", dispatch=report, warning=warning
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _lost_race(load_id, verb):
    current = Load.objects.filter(pk=load_id).values_list("status", flat=True).first()
    logger.info("Rejected attempt to %s load %s in status %s", verb, load_id, current)
    return InvalidTransition(
        f"Cannot {verb}: load is currently {current}.",
        current_status=current,
    )


def _flatten(exc: ValidationError) -> str:
    if hasattr(exc, "message_dict"):
        return "; ".join(
            f"{field}: {' '.join(messages)}" for field, messages in exc.message_dict.items()
        )
    return " ".join(exc.messages)
