"""
Driver assignment helpers used by dispatch.

The assignment itself (Pending -> Assigned, or an edit of an existing
assignment) is performed by `lifecycle.assign_driver`; this module picks
candidates and validates the dispatcher's input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.db.models import Count, Q

from freight.models import Driver, Load
from freight.services.exceptions import LoadValidationError


def available_drivers(include_user_id=None):
    """
    Active, linked drivers that can take a load, with their workload.

    `include_user_id` keeps that driver in the list whatever their
    availability, so an existing assignment can be edited.

    Each driver carries `active_load_count`: loads assigned to them that are
    past Pending and not yet Delivered. Dispatch uses it to balance work.
    """
    return (
        Driver.objects.filter(is_active=True, user__isnull=False)
        .filter(
            Q(availability_status="")
            | Q(availability_status=Driver.Availability.AVAILABLE)
            | Q(user_id=include_user_id)
        )
        .annotate(
            active_load_count=Count(
                "user__driver_loads",
                filter=Q(user__driver_loads__status__in=Load.ACTIVE_STATUSES),
            )
        )
        .order_by("active_load_count", "first_name", "last_name")
    )


def parse_price_to_cents(value) -> int:
    """'1500', '1,500.50' or Decimal -> integer cents (half-up)."""
    try:
        amount = Decimal(str(value).replace(",", "").replace("$", "").strip())
    except (InvalidOperation, ValueError):
        raise LoadValidationError("Please enter a valid price.")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return validate_price_cents(cents)


def validate_price_cents(price_cents) -> int:
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        raise LoadValidationError("Price must be a whole number of cents.")
    if price_cents <= 0:
        raise LoadValidationError("Price must be greater than zero.")
    return price_cents


def validate_truck_number(truck_number) -> str:
    truck_number = (truck_number or "").strip()
    if not truck_number:
        raise LoadValidationError("Truck number is required.")
    return truck_number


def get_assignable_driver(driver_id, *, current_driver_user_id=None) -> Driver:
    """
    Look up the Driver record a dispatcher picked.

    Availability is only enforced when the driver changes; keeping the
    current driver on an edit is always allowed.
    """
    try:
        driver = Driver.objects.select_related("user").get(pk=driver_id)
    except (Driver.DoesNotExist, ValueError, TypeError):
        raise LoadValidationError("Selected driver does not exist.")

    if not driver.is_active:
        raise LoadValidationError(f"{driver.full_name} is deactivated.")
    if not driver.is_linked:
        raise LoadValidationError(
            f"{driver.full_name} has not signed up yet and cannot be assigned."
        )
    if driver.user_id != current_driver_user_id and not driver.is_assignable:
        raise LoadValidationError(
            f"{driver.full_name} is {driver.availability_status}."
        )
    return driver
