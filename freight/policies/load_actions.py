from freight.models import Load
from freight.policies.roles import is_client, is_dispatcher, is_driver

# driver action -> status it can be performed from
DRIVER_ACTIONS = {
    Load.Status.ASSIGNED: ["arrive"],
    Load.Status.ARRIVED: ["load"],
    Load.Status.LOADED: ["depart"],
    Load.Status.IN_TRANSIT: ["arrive_at_delivery", "deliver"],
    Load.Status.ARRIVED_AT_DELIVERY: ["deliver"],
}


def actions_for(user, load: Load) -> list[str]:
    """
    Pure function. No request. No DB writes. Safe to test.

    The lifecycle services re-check every guard; this only decides which
    buttons to show.
    """
    actions: list[str] = []

    if is_dispatcher(user):
        if load.status == Load.Status.PENDING:
            actions.append("assign")
        elif load.status in Load.ACTIVE_STATUSES:
            actions.append("edit_assignment")

    if is_driver(user) and load.driver_id == user.pk:
        actions.extend(DRIVER_ACTIONS.get(load.status, []))

    if is_client(user) and load.client_id == user.pk:
        if (
            load.payment_required
            and load.payment_status == Load.PaymentStatus.PENDING
            and load.price_cents
        ):
            actions.append("pay")

    return actions
