import datetime

from django.db.models import Count, Q, Sum
from django.utils import timezone

from freight.models import Driver, Load
from freight.policies.roles import is_client, is_dispatcher, is_driver
from freight.services.exceptions import AuthorizationError
from freight.services.notifications import unread_count


def loads_for(user):
    """Loads visible to `user`: everything for dispatch, own loads otherwise."""
    loads = Load.objects.select_related("client", "driver")
    if is_dispatcher(user):
        return loads
    if is_driver(user):
        return loads.filter(driver=user)
    if is_client(user):
        return loads.filter(client=user)
    return loads.none()


def dashboard_summary(user) -> dict:
    """Per-role counters for the dashboard header."""
    counts = loads_for(user).aggregate(
        total=Count("pk"),
        pending=Count("pk", filter=Q(status=Load.Status.PENDING)),
        active=Count("pk", filter=Q(status__in=Load.ACTIVE_STATUSES)),
        in_transit=Count(
            "pk",
            filter=Q(
                status__in=[Load.Status.IN_TRANSIT, Load.Status.ARRIVED_AT_DELIVERY]
            ),
        ),
        delivered=Count("pk", filter=Q(status=Load.Status.DELIVERED)),
        awaiting_payment=Count(
            "pk",
            filter=Q(
                payment_required=True, payment_status=Load.PaymentStatus.PENDING
            ),
        ),
    )
    summary = {"unread_notifications": unread_count(user)}

    if is_dispatcher(user):
        summary.update(
            pending=counts["pending"],
            active=counts["active"],
            delivered=counts["delivered"],
            available_drivers=Driver.objects.filter(
                is_active=True, user__isnull=False
            )
            .filter(
                Q(availability_status="")
                | Q(availability_status=Driver.Availability.AVAILABLE)
            )
            .count(),
        )
    elif is_driver(user):
        summary.update(active=counts["active"], completed=counts["delivered"])
    elif is_client(user):
        summary.update(
            total=counts["total"],
            pending=counts["pending"],
            in_transit=counts["in_transit"],
            delivered=counts["delivered"],
            awaiting_payment=counts["awaiting_payment"],
        )
    return summary


INSIGHT_WEEKS = 8


def insights(user, *, now=None) -> dict:
    """
    Fleet-wide figures for the dispatcher insights page.

    `weekly_volume` holds one entry per week for the last eight weeks, oldest
    first; "Week 8" is the seven days ending `now`. Distributions leave out
    values with no loads.
    """
    if not is_dispatcher(user):
        raise AuthorizationError("Only dispatchers can view insights.")
    now = now or timezone.now()

    loads = Load.objects.all()
    totals = loads.aggregate(
        total_loads=Count("pk"),
        delivered_loads=Count("pk", filter=Q(status=Load.Status.DELIVERED)),
        total_tonnage=Sum("weight_lbs", default=0),
        active_tonnage=Sum(
            "weight_lbs", filter=Q(status__in=Load.ACTIVE_STATUSES), default=0
        ),
    )

    week = datetime.timedelta(days=7)
    buckets = [0] * INSIGHT_WEEKS
    recent = loads.filter(
        created_at__gt=now - week * INSIGHT_WEEKS, created_at__lte=now
    ).values_list("created_at", flat=True)
    for created_at in recent:
        weeks_ago = int((now - created_at) / week)
        buckets[INSIGHT_WEEKS - 1 - weeks_ago] += 1

    by_status = dict(
        loads.values_list("status").annotate(count=Count("pk")).order_by()
    )
    by_trailer = (
        loads.values("trailer_type")
        .annotate(count=Count("pk"))
        .order_by("-count", "trailer_type")
    )

    return {
        **totals,
        "weekly_volume": [
            {"label": f"Week {i + 1}", "loads": count}
            for i, count in enumerate(buckets)
        ],
        "status_distribution": [
            {
                "status": status.value,
                "label": status.label,
                "count": by_status[status.value],
            }
            for status in Load.Status
            if by_status.get(status.value)
        ],
        "trailer_distribution": [
            {"trailer_type": row["trailer_type"], "count": row["count"]}
            for row in by_trailer
        ],
    }
