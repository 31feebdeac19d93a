from django.contrib import admin

from .models import Client, DispatcherInvite, Driver, Load, Notification, PushSubscription


@admin.register(Load)
class LoadAdmin(admin.ModelAdmin):
    list_display = (
        "reference",
        "origin_address",
        "destination_address",
        "status",
        "driver_name",
        "payment_status",
        "created_at",
    )
    list_filter = ("status", "trailer_type", "payment_status")
    search_fields = ("id", "origin_address", "destination_address", "driver_name")
    # Status and milestones only change through the lifecycle service
    readonly_fields = (
        "status",
        "assigned_at",
        "arrived_at",
        "loaded_at",
        "in_transit_at",
        "arrived_at_delivery_at",
        "delivered_at",
        "paid_at",
    )


@admin.register(Driver)
class DriverAdmin(admin.ModelAdmin):
    list_display = ("full_name", "email", "truck_number", "availability_status", "is_active")
    list_filter = ("availability_status", "truck_type", "is_active")
    search_fields = ("first_name", "last_name", "email", "truck_number")


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ("full_name", "email", "phone_number", "is_active")
    search_fields = ("first_name", "last_name", "email")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "user", "type", "read", "created_at")
    list_filter = ("type", "read")


admin.site.register(PushSubscription)
admin.site.register(DispatcherInvite)
