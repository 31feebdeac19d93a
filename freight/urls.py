"""
URL routing for the freight app.

- /loads/ -> loads visible to the current user
- /loads/new/ -> client load request
- /loads/<uuid>/ -> load detail with role-based actions
- /loads/<uuid>/assign/ -> dispatcher assignment (initial or edit)
- /loads/<uuid>/status/<action>/ -> driver status transitions
"""

from django.urls import path

from .views import (
    accept_invite,
    assign_load,
    change_status,
    checkout,
    client_profile,
    clients_list,
    dashboard,
    deactivate_client,
    deactivate_driver,
    driver_availability,
    drivers_list,
    insights_page,
    invites,
    load_detail,
    loads_list,
    notification_read,
    notifications_list,
    notifications_read_all,
    push_subscribe,
    push_unsubscribe,
    stripe_webhook,
    submit_load,
)

urlpatterns = [
    path("", dashboard, name="dashboard"),
    path("insights/", insights_page, name="insights"),
    path("profile/", client_profile, name="client_profile"),
    # Specific load routes BEFORE the <uuid:load_id>/ route
    path("loads/new/", submit_load, name="submit_load"),
    path("loads/<uuid:load_id>/assign/", assign_load, name="assign_load"),
    path(
        "loads/<uuid:load_id>/status/<str:action>/",
        change_status,
        name="change_status",
    ),
    path("loads/<uuid:load_id>/checkout/", checkout, name="checkout"),
    path("loads/<uuid:load_id>/", load_detail, name="load_detail"),
    path("loads/", loads_list, name="loads_list"),
    # Roster
    path("drivers/", drivers_list, name="drivers_list"),
    path(
        "drivers/<int:driver_id>/availability/",
        driver_availability,
        name="driver_availability",
    ),
    path(
        "drivers/<int:driver_id>/deactivate/",
        deactivate_driver,
        name="deactivate_driver",
    ),
    path("clients/", clients_list, name="clients_list"),
    path(
        "clients/<int:client_id>/deactivate/",
        deactivate_client,
        name="deactivate_client",
    ),
    # Notifications
    path("notifications/", notifications_list, name="notifications"),
    path(
        "notifications/read-all/",
        notifications_read_all,
        name="notifications_read_all",
    ),
    path(
        "notifications/<int:notification_id>/read/",
        notification_read,
        name="notification_read",
    ),
    path("push/subscribe/", push_subscribe, name="push_subscribe"),
    path("push/unsubscribe/", push_unsubscribe, name="push_unsubscribe"),
    # Dispatcher invites
    path("invites/", invites, name="invites"),
    path("invites/<str:token>/", accept_invite, name="accept_invite"),
    # Stripe
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
