from decimal import Decimal

import pytest

from freight.models import Driver
from freight.services.assignment import (
    available_drivers,
    get_assignable_driver,
    parse_price_to_cents,
)
from freight.services.exceptions import LoadValidationError

pytestmark = pytest.mark.django_db


@pytest.mark.parametrize(
    "value,cents",
    [
        ("1500", 150_000),
        ("1,500.50", 150_050),
        ("$99.99", 9_999),
        (Decimal("0.015"), 2),
        ("  12.5 ", 1_250),
    ],
)
def test_parse_price_to_cents(value, cents):
    assert parse_price_to_cents(value) == cents


@pytest.mark.parametrize("value", ["", "abc", "0", "-5", "0.001"])
def test_parse_price_rejects_non_positive_or_garbage(value):
    with pytest.raises(LoadValidationError):
        parse_price_to_cents(value)


def test_available_drivers_excludes_unavailable_unlinked_and_inactive(driver_factory):
    ready = driver_factory()
    driver_factory(availability_status=Driver.Availability.MAINTENANCE)
    driver_factory(user=None)
    driver_factory(is_active=False)

    assert list(available_drivers()) == [ready]


def test_current_driver_stays_listed_while_editing(driver_factory):
    busy = driver_factory(availability_status=Driver.Availability.MAINTENANCE)
    assert busy not in available_drivers()
    assert busy in available_drivers(include_user_id=busy.user_id)


def test_available_drivers_least_loaded_first(driver_factory, load_factory):
    busy = driver_factory(first_name="Aaron")
    idle = driver_factory(first_name="Zed")
    load_factory.create_batch(2, assigned=True, driver=busy.user)
    load_factory(assigned=True, driver=idle.user, status="Delivered")

    drivers = list(available_drivers())
    assert drivers == [idle, busy]
    assert [d.active_load_count for d in drivers] == [0, 2]


def test_get_assignable_driver_guards(driver_factory):
    with pytest.raises(LoadValidationError, match="does not exist"):
        get_assignable_driver(999_999)
    with pytest.raises(LoadValidationError, match="not signed up"):
        get_assignable_driver(driver_factory(user=None).pk)
    with pytest.raises(LoadValidationError, match="deactivated"):
        get_assignable_driver(driver_factory(is_active=False).pk)

    off_duty = driver_factory(availability_status=Driver.Availability.MAINTENANCE)
    with pytest.raises(LoadValidationError, match="Maintenance"):
        get_assignable_driver(off_duty.pk)
    assert (
        get_assignable_driver(off_duty.pk, current_driver_user_id=off_duty.user_id)
        == off_duty
    )
