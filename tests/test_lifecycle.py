import base64
import datetime
from unittest import mock

import pytest
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError
from django.db.models.query import QuerySet
from django.utils import timezone

from freight.models import Driver, Load, Notification
from freight.services import lifecycle
from freight.services.events import EventType
from freight.services.exceptions import (
    AuthorizationError,
    DispatchDegraded,
    InvalidTransition,
    LoadNotFound,
    LoadValidationError,
    StoreUnavailable,
)

pytestmark = pytest.mark.django_db

SIGNATURE = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\nsig").decode()

STATUS_ORDER = list(Load.Status)


def rank(load):
    return STATUS_ORDER.index(Load.Status(load.status))


def timestamps(load):
    return {field: getattr(load, field) for field in Load.TIMESTAMP_FIELDS.values()}


BASE_TIME = timezone.now().replace(microsecond=0) + datetime.timedelta(days=1)


def at(hours):
    return BASE_TIME + datetime.timedelta(hours=hours)


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


def test_submit_creates_pending_load_and_notifies_client_and_dispatch(
    client_user, recorder
):
    result = lifecycle.submit_load(
        client_user,
        notifier=recorder,
        origin_address="  12 Dock Rd, Dallas TX ",
        destination_address="9 Yard Ln, Tulsa OK",
        trailer_type="Flat Bed",
        weight_lbs=42_000,
        pickup_date=timezone.localdate(),
        delivery_asap=True,
    )

    load = Load.objects.get(pk=result.load.pk)
    assert load.status == Load.Status.PENDING
    assert load.client == client_user
    assert load.origin_address == "12 Dock Rd, Dallas TX"
    assert timestamps(load) == dict.fromkeys(Load.TIMESTAMP_FIELDS.values())

    assert recorder.events == [EventType.LOAD_SUBMITTED]
    call = recorder.calls[0]
    assert call["primary_recipient"] == client_user
    assert call["notify_dispatchers"] is True
    assert not result.degraded


def test_submit_with_payment_required_starts_payment_pending(client_user, recorder):
    result = lifecycle.submit_load(
        client_user,
        notifier=recorder,
        origin_address="A",
        destination_address="B",
        trailer_type="1Ton",
        weight_lbs=800,
        pickup_date=timezone.localdate(),
        payment_required=True,
    )
    assert result.load.payment_status == Load.PaymentStatus.PENDING


@pytest.mark.parametrize(
    "overrides",
    [
        {"weight_lbs": 0},
        {"weight_lbs": 250_000},
        {"trailer_type": "Tanker"},
        {"origin_address": "   "},
        {"delivery_date": datetime.date(2020, 1, 1)},
    ],
)
def test_submit_rejects_invalid_payload_without_writing(client_user, recorder, overrides):
    fields = dict(
        origin_address="A",
        destination_address="B",
        trailer_type="Step Deck",
        weight_lbs=10_000,
        pickup_date=datetime.date(2030, 5, 1),
    )
    fields.update(overrides)

    with pytest.raises(LoadValidationError):
        lifecycle.submit_load(client_user, notifier=recorder, **fields)

    assert Load.objects.count() == 0
    assert recorder.calls == []


def test_submit_rejects_unknown_fields(client_user, recorder):
    with pytest.raises(LoadValidationError):
        lifecycle.submit_load(client_user, notifier=recorder, status="Delivered")


def test_only_clients_can_submit(dispatcher, recorder):
    with pytest.raises(AuthorizationError):
        lifecycle.submit_load(dispatcher, notifier=recorder, origin_address="A")
    assert Load.objects.count() == 0


# ---------------------------------------------------------------------------
# assign / edit assignment
# ---------------------------------------------------------------------------


def test_assign_pending_load(pending_load, dispatcher, driver, recorder):
    result = lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, None, notifier=recorder
    )

    load = Load.objects.get(pk=pending_load.pk)
    assert result.action == "assign"
    assert load.status == Load.Status.ASSIGNED
    assert load.assigned_at is not None
    assert load.driver == driver.user
    assert load.driver_name == driver.full_name
    assert load.truck_number == "TRK-1"
    assert load.price_cents == 150_000
    assert load.eta is None

    assert recorder.events == [EventType.LOAD_APPROVED]
    assert recorder.calls[0]["primary_recipient"] == pending_load.client
    assert recorder.calls[0]["notify_dispatchers"] is False


def test_repeating_identical_assignment_is_a_silent_edit(
    pending_load, dispatcher, driver, recorder
):
    args = (dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, None)
    lifecycle.assign_driver(*args, notifier=recorder)
    assigned_at = Load.objects.get(pk=pending_load.pk).assigned_at
    recorder.calls.clear()

    result = lifecycle.assign_driver(*args, notifier=recorder)

    load = Load.objects.get(pk=pending_load.pk)
    assert result.action == "edit_assignment"
    assert load.status == Load.Status.ASSIGNED
    assert load.assigned_at == assigned_at
    assert recorder.calls == []


def test_changing_eta_fires_exactly_one_eta_notification(
    pending_load, dispatcher, driver, recorder
):
    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, at(1), notifier=recorder
    )
    recorder.calls.clear()

    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, at(5), notifier=recorder
    )

    assert recorder.events == [EventType.ETA_UPDATED]
    assert recorder.calls[0]["primary_recipient"] == pending_load.client
    assert Load.objects.get(pk=pending_load.pk).eta == at(5)


def test_edit_can_swap_driver_truck_and_price_without_notifying(
    pending_load, dispatcher, driver, driver_factory, recorder
):
    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, notifier=recorder
    )
    other = driver_factory()
    recorder.calls.clear()

    lifecycle.assign_driver(
        dispatcher, pending_load.pk, other.pk, "TRK-9", 99_900, notifier=recorder
    )

    load = Load.objects.get(pk=pending_load.pk)
    assert load.driver == other.user
    assert load.driver_name == other.full_name
    assert (load.truck_number, load.price_cents) == ("TRK-9", 99_900)
    assert recorder.calls == []


def test_concurrent_eta_edits_notify_the_client_once(
    pending_load, dispatcher, driver, recorder
):
    """Another dispatcher saves the same ETA between our read and our update."""
    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, at(1), notifier=recorder
    )
    recorder.calls.clear()
    real_cas = lifecycle.store.compare_and_set

    def competing_cas(load_id, expected, **kwargs):
        Load.objects.filter(pk=load_id).update(eta=at(5))
        return real_cas(load_id, expected, **kwargs)

    with mock.patch.object(lifecycle.store, "compare_and_set", side_effect=competing_cas):
        with pytest.raises(InvalidTransition, match="changed by someone else") as exc:
            lifecycle.assign_driver(
                dispatcher,
                pending_load.pk,
                driver.pk,
                "TRK-1",
                150_000,
                at(5),
                notifier=recorder,
            )

    assert exc.value.current_status == Load.Status.ASSIGNED
    assert recorder.calls == []
    assert Load.objects.get(pk=pending_load.pk).eta == at(5)


def test_assignment_can_be_edited_while_in_transit(
    pending_load, dispatcher, driver, advance_to, recorder
):
    load = advance_to(pending_load, "In-Transit")
    lifecycle.assign_driver(
        dispatcher, load.pk, driver.pk, driver.truck_number, 150_000, at(3), notifier=recorder
    )
    load.refresh_from_db()
    assert load.status == Load.Status.IN_TRANSIT
    assert recorder.events == [EventType.ETA_UPDATED]


def test_assignment_of_delivered_load_is_rejected(
    pending_load, dispatcher, driver, advance_to, recorder
):
    load = advance_to(pending_load, "Delivered")
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.assign_driver(
            dispatcher, load.pk, driver.pk, "TRK-1", 150_000, notifier=recorder
        )
    assert exc.value.current_status == Load.Status.DELIVERED


@pytest.mark.parametrize(
    "truck_number, price_cents",
    [("", 150_000), ("   ", 150_000), ("TRK-1", 0), ("TRK-1", -5), ("TRK-1", 12.5)],
)
def test_assign_validates_payload_before_writing(
    pending_load, dispatcher, driver, recorder, truck_number, price_cents
):
    with pytest.raises(LoadValidationError):
        lifecycle.assign_driver(
            dispatcher,
            pending_load.pk,
            driver.pk,
            truck_number,
            price_cents,
            notifier=recorder,
        )
    load = Load.objects.get(pk=pending_load.pk)
    assert load.status == Load.Status.PENDING
    assert load.driver_id is None
    assert recorder.calls == []


def test_only_dispatchers_can_assign(pending_load, driver, recorder):
    with pytest.raises(AuthorizationError):
        lifecycle.assign_driver(
            driver.user, pending_load.pk, driver.pk, "TRK-1", 150_000, notifier=recorder
        )
    assert Load.objects.get(pk=pending_load.pk).status == Load.Status.PENDING
    assert recorder.calls == []


@pytest.mark.parametrize(
    "driver_kwargs",
    [
        {"availability_status": Driver.Availability.MAINTENANCE},
        {"is_active": False},
        {"user": None},
    ],
)
def test_unassignable_drivers_are_rejected(
    pending_load, dispatcher, driver_factory, recorder, driver_kwargs
):
    candidate = driver_factory(**driver_kwargs)
    with pytest.raises(LoadValidationError):
        lifecycle.assign_driver(
            dispatcher, pending_load.pk, candidate.pk, "TRK-1", 150_000, notifier=recorder
        )
    assert Load.objects.get(pk=pending_load.pk).status == Load.Status.PENDING


def test_assign_unknown_load(dispatcher, driver, recorder):
    with pytest.raises(LoadNotFound):
        lifecycle.assign_driver(
            dispatcher,
            "00000000-0000-0000-0000-000000000000",
            driver.pk,
            "TRK-1",
            150_000,
            notifier=recorder,
        )


# ---------------------------------------------------------------------------
# driver transitions
# ---------------------------------------------------------------------------


def test_full_walk_stamps_each_timestamp_once(pending_load, dispatcher, driver, recorder):
    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, notifier=recorder
    )
    seen = timestamps(Load.objects.get(pk=pending_load.pk))

    for action in ["arrive", "load", "depart", "arrive_at_delivery", "deliver"]:
        step = lifecycle.TRANSITIONS[action]
        assert seen[step.timestamp_field] is None

        lifecycle.advance(driver.user, pending_load.pk, action, notifier=recorder)
        current = timestamps(Load.objects.get(pk=pending_load.pk))

        assert current[step.timestamp_field] is not None
        for field, value in seen.items():
            if value is not None:
                assert current[field] == value
        seen = current

    assert Load.objects.get(pk=pending_load.pk).status == Load.Status.DELIVERED
    assert recorder.events == [
        EventType.LOAD_APPROVED,
        EventType.STATUS_IN_TRANSIT,
        EventType.STATUS_DELIVERED,
    ]


def test_status_never_decreases_or_skips(pending_load, dispatcher, driver, recorder):
    lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, notifier=recorder
    )
    load = Load.objects.get(pk=pending_load.pk)
    previous = rank(load)

    # try every action at every stage; only the legal successor may apply
    for _ in range(len(lifecycle.DRIVER_TRANSITIONS)):
        for action in lifecycle.DRIVER_TRANSITIONS:
            try:
                lifecycle.advance(driver.user, load.pk, action, notifier=recorder)
            except InvalidTransition:
                pass
            load.refresh_from_db()
            current = rank(load)
            assert current >= previous
            assert current - previous <= 2
            if current - previous == 2:
                # In-Transit -> Delivered, skipping Arrived at Delivery
                assert action == "deliver"
            previous = current

    assert load.status == Load.Status.DELIVERED


def test_skipping_a_stage_is_rejected(pending_load, advance_to, driver, recorder):
    load = advance_to(pending_load, "Assigned")

    with pytest.raises(InvalidTransition) as exc:
        lifecycle.advance(driver.user, load.pk, "load", notifier=recorder)

    load.refresh_from_db()
    assert exc.value.current_status == Load.Status.ASSIGNED
    assert load.status == Load.Status.ASSIGNED
    assert load.loaded_at is None
    assert recorder.calls == []


def test_same_transition_twice_applies_once(pending_load, advance_to, driver, recorder):
    load = advance_to(pending_load, "Loaded")

    lifecycle.advance(driver.user, load.pk, "depart", notifier=recorder)
    first = Load.objects.get(pk=load.pk).in_transit_at

    with pytest.raises(InvalidTransition):
        lifecycle.advance(driver.user, load.pk, "depart", notifier=recorder)

    load.refresh_from_db()
    assert load.status == Load.Status.IN_TRANSIT
    assert load.in_transit_at == first
    assert recorder.events == [EventType.STATUS_IN_TRANSIT]


def test_lost_race_is_reported_as_invalid_transition(
    pending_load, advance_to, driver, recorder
):
    """The competing request commits between our read and our conditional update."""
    load = advance_to(pending_load, "Assigned")
    real_cas = lifecycle.store.compare_and_set

    def competing_cas(load_id, expected, **kwargs):
        Load.objects.filter(pk=load_id).update(
            status=Load.Status.ARRIVED, arrived_at=timezone.now()
        )
        return real_cas(load_id, expected, **kwargs)

    with mock.patch.object(lifecycle.store, "compare_and_set", side_effect=competing_cas):
        with pytest.raises(InvalidTransition) as exc:
            lifecycle.advance(driver.user, load.pk, "arrive", notifier=recorder)

    assert exc.value.current_status == Load.Status.ARRIVED
    assert recorder.calls == []


def test_deliver_with_signature_from_in_transit(pending_load, advance_to, driver, recorder):
    load = advance_to(pending_load, "In-Transit")

    result = lifecycle.advance(
        driver.user, load.pk, "deliver", signature=SIGNATURE, notifier=recorder
    )

    load.refresh_from_db()
    assert result.action == "deliver"
    assert load.status == Load.Status.DELIVERED
    assert load.delivered_at is not None
    assert load.arrived_at_delivery_at is None
    assert load.client_signature_url.startswith(f"signatures/{load.pk}")
    assert load.signature_timestamp == load.delivered_at
    assert recorder.events == [EventType.STATUS_DELIVERED]
    assert recorder.calls[0]["primary_recipient"] == load.client

    for action in lifecycle.DRIVER_TRANSITIONS:
        with pytest.raises(InvalidTransition):
            lifecycle.advance(driver.user, load.pk, action, notifier=recorder)


def test_deliver_by_another_driver_is_unauthorized(
    pending_load, advance_to, driver_factory, recorder
):
    load = advance_to(pending_load, "In-Transit")
    before = timestamps(load)
    intruder = driver_factory()

    with pytest.raises(AuthorizationError):
        lifecycle.advance(intruder.user, load.pk, "deliver", notifier=recorder)

    load.refresh_from_db()
    assert load.status == Load.Status.IN_TRANSIT
    assert timestamps(load) == before
    assert recorder.calls == []


def test_non_drivers_cannot_advance(pending_load, advance_to, dispatcher, recorder):
    load = advance_to(pending_load, "Assigned")
    with pytest.raises(AuthorizationError):
        lifecycle.advance(dispatcher, load.pk, "arrive", notifier=recorder)
    with pytest.raises(AuthorizationError):
        lifecycle.advance(load.client, load.pk, "arrive", notifier=recorder)


def test_signature_is_only_accepted_on_delivery(pending_load, advance_to, driver, recorder):
    load = advance_to(pending_load, "Assigned")
    with pytest.raises(LoadValidationError):
        lifecycle.advance(
            driver.user, load.pk, "arrive", signature=SIGNATURE, notifier=recorder
        )
    assert Load.objects.get(pk=load.pk).status == Load.Status.ASSIGNED


def test_malformed_signature_is_rejected_before_writing(
    pending_load, advance_to, driver, recorder
):
    load = advance_to(pending_load, "In-Transit")
    with pytest.raises(LoadValidationError):
        lifecycle.advance(
            driver.user, load.pk, "deliver", signature="not-an-image", notifier=recorder
        )
    assert Load.objects.get(pk=load.pk).status == Load.Status.IN_TRANSIT


def test_unknown_action_is_a_validation_error(pending_load, advance_to, driver, recorder):
    load = advance_to(pending_load, "Assigned")
    for action in ("assign", "teleport"):
        with pytest.raises(LoadValidationError):
            lifecycle.advance(driver.user, load.pk, action, notifier=recorder)


def test_store_failure_is_retryable_and_changes_nothing(
    pending_load, advance_to, driver, recorder
):
    load = advance_to(pending_load, "Assigned")

    with mock.patch.object(QuerySet, "update", side_effect=DatabaseError("gone")):
        with pytest.raises(StoreUnavailable):
            lifecycle.advance(driver.user, load.pk, "arrive", notifier=recorder)

    assert Load.objects.get(pk=load.pk).status == Load.Status.ASSIGNED
    assert recorder.calls == []

    # same arguments succeed once the store is back
    lifecycle.advance(driver.user, load.pk, "arrive", notifier=recorder)
    assert Load.objects.get(pk=load.pk).status == Load.Status.ARRIVED


def test_store_failure_on_delivery_leaves_no_signature_file(
    pending_load, advance_to, driver, recorder, media_root
):
    load = advance_to(pending_load, "In-Transit")

    for _ in range(2):
        with mock.patch.object(QuerySet, "update", side_effect=DatabaseError("gone")):
            with pytest.raises(StoreUnavailable):
                lifecycle.advance(
                    driver.user, load.pk, "deliver", signature=SIGNATURE, notifier=recorder
                )

    assert list(media_root.glob("signatures/*")) == []
    load.refresh_from_db()
    assert load.status == Load.Status.IN_TRANSIT
    assert load.client_signature_url is None

    lifecycle.advance(driver.user, load.pk, "deliver", signature=SIGNATURE, notifier=recorder)
    load.refresh_from_db()
    assert len(list(media_root.glob("signatures/*"))) == 1
    assert (media_root / load.client_signature_url).exists()


# ---------------------------------------------------------------------------
# degraded dispatch
# ---------------------------------------------------------------------------


def test_email_failure_on_delivery_degrades_but_keeps_the_transition(
    pending_load, advance_to, driver
):
    load = advance_to(pending_load, "In-Transit")

    with mock.patch.object(
        EmailMultiAlternatives, "send", side_effect=ConnectionError("smtp down")
    ):
        result = lifecycle.advance(driver.user, load.pk, "deliver")

    load.refresh_from_db()
    assert load.status == Load.Status.DELIVERED
    assert load.delivered_at is not None
    assert result.degraded
    assert isinstance(result.warning, DispatchDegraded)
    assert result.dispatch.email_failed == 1
    # the other channels still ran
    assert Notification.objects.filter(
        user=load.client, type=Notification.Type.STATUS_DELIVERED
    ).exists()


def test_crashing_notifier_degrades_instead_of_raising(pending_load, dispatcher, driver):
    notifier = mock.Mock()
    notifier.notify.side_effect = RuntimeError("boom")

    result = lifecycle.assign_driver(
        dispatcher, pending_load.pk, driver.pk, "TRK-1", 150_000, notifier=notifier
    )

    assert result.degraded
    assert Load.objects.get(pk=pending_load.pk).status == Load.Status.ASSIGNED


# ---------------------------------------------------------------------------
# driver availability
# ---------------------------------------------------------------------------


def test_driver_updates_own_availability_and_dispatch_hears(driver, recorder):
    back = at(34)
    result = lifecycle.update_driver_availability(
        driver.user, driver.pk, Driver.Availability.RESETTING, back, notifier=recorder
    )

    driver.refresh_from_db()
    assert driver.availability_status == Driver.Availability.RESETTING
    assert driver.available_at == back
    assert result.load is None
    assert recorder.events == [EventType.DRIVER_AVAILABILITY]
    call = recorder.calls[0]
    assert call["primary_recipient"] is None
    assert call["notify_dispatchers"] is True
    assert call["payload"]["driver_name"] == driver.full_name


def test_marking_available_clears_available_at(driver, dispatcher, recorder):
    driver.availability_status = Driver.Availability.NOT_AVAILABLE
    driver.available_at = at(2)
    driver.save()

    lifecycle.update_driver_availability(
        dispatcher, driver.pk, Driver.Availability.AVAILABLE, at(9), notifier=recorder
    )

    driver.refresh_from_db()
    assert driver.availability_status == Driver.Availability.AVAILABLE
    assert driver.available_at is None


def test_availability_guards(driver, driver_factory, client_user, recorder):
    other = driver_factory()
    with pytest.raises(AuthorizationError):
        lifecycle.update_driver_availability(
            other.user, driver.pk, Driver.Availability.MAINTENANCE, notifier=recorder
        )
    with pytest.raises(AuthorizationError):
        lifecycle.update_driver_availability(
            client_user, driver.pk, Driver.Availability.MAINTENANCE, notifier=recorder
        )
    with pytest.raises(LoadValidationError):
        lifecycle.update_driver_availability(
            driver.user, driver.pk, "On Vacation", notifier=recorder
        )
    assert recorder.calls == []
