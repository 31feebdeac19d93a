import json

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from freight.policies.load_actions import actions_for
from freight.policies.roles import is_client, is_dispatcher, is_driver
from freight.services import lifecycle, notifications, onboarding, payments, push
from freight.services.dashboard import dashboard_summary, insights, loads_for
from freight.services.exceptions import PaymentError, ServiceError

from .forms import (
    AssignDriverForm,
    AvailabilityForm,
    ClientForm,
    ClientProfileForm,
    DispatcherInviteForm,
    DriverForm,
    LoadRequestForm,
)
from .models import Client, Driver, Load, Notification


def _report(request, result, success_message):
    """
    Show the outcome of a committed lifecycle operation.

    A degraded dispatch is a warning, never an error: the change itself
    went through.
    """
    if result.degraded:
        messages.warning(request, f"{success_message} {result.warning}")
    else:
        messages.success(request, success_message)


@login_required
def dashboard(request):
    """Role-specific counters plus the most recent loads."""
    user = request.user
    if not is_dispatcher(user):
        # first visit after signing up with a provisioned email
        onboarding.link_account(user)

    context = {
        "summary": dashboard_summary(user),
        "loads": loads_for(user)[:10],
    }
    if is_driver(user):
        context["driver"] = Driver.objects.filter(user=user).first()
        context["availability_form"] = AvailabilityForm()
    return render(request, "freight/dashboard.html", context)


@login_required
def insights_page(request):
    try:
        stats = insights(request.user)
    except ServiceError as e:
        messages.error(request, str(e))
        return redirect("dashboard")
    return render(request, "freight/insights.html", {"insights": stats})


@login_required
def loads_list(request):
    loads = loads_for(request.user)
    status = request.GET.get("status")
    if status in Load.Status.values:
        loads = loads.filter(status=status)
    context = {"loads": loads, "statuses": Load.Status.choices, "status": status}
    return render(request, "freight/loads_list.html", context)


@login_required
@transaction.non_atomic_requests
def submit_load(request):
    """Client load request (PRG)."""
    if not is_client(request.user):
        messages.error(request, "Only clients can request loads.")
        return redirect("dashboard")

    if request.method == "POST":
        form = LoadRequestForm(request.POST)
        if form.is_valid():
            try:
                result = lifecycle.submit_load(request.user, **form.cleaned_data)
            except ServiceError as e:
                messages.error(request, str(e))
            else:
                _report(
                    request,
                    result,
                    f"Load request #{result.load.reference} submitted successfully.",
                )
                return redirect("load_detail", load_id=result.load.pk)
    else:
        form = LoadRequestForm()

    return render(request, "freight/load_form.html", {"form": form})


@login_required
def load_detail(request, load_id):
    """
    Display a load with the actions the current user may take.

    Clients and drivers only see their own loads.
    """
    load = get_object_or_404(loads_for(request.user), pk=load_id)

    payment = request.GET.get("payment")
    if payment == "success":
        messages.success(request, "Payment received. Thank you!")
    elif payment == "cancelled":
        messages.info(request, "Payment was cancelled.")

    available_actions = actions_for(request.user, load)
    context = {
        "load": load,
        "timeline": load.timeline(),
        "available_actions": available_actions,
        "action_labels": lifecycle.ACTION_LABELS,
    }
    if "assign" in available_actions or "edit_assignment" in available_actions:
        context["assign_form"] = AssignDriverForm(
            load=load, initial=AssignDriverForm.initial_for(load)
        )
    return render(request, "freight/load_detail.html", context)


@login_required
@require_POST
@transaction.non_atomic_requests
def assign_load(request, load_id):
    """Initial assignment or edit of an existing one (dispatcher only)."""
    load = get_object_or_404(Load, pk=load_id)
    form = AssignDriverForm(request.POST, load=load)
    if not form.is_valid():
        for field, errors in form.errors.items():
            messages.error(request, f"{field}: {' '.join(errors)}")
        return redirect("load_detail", load_id=load.pk)

    try:
        result = lifecycle.assign_driver(
            request.user,
            load.pk,
            form.cleaned_data["driver"].pk,
            form.cleaned_data["truck_number"],
            form.price_cents,
            form.cleaned_data["eta"],
        )
    except ServiceError as e:
        messages.error(request, str(e))
    else:
        if result.action == "assign":
            message = f"Driver {result.load.driver_name} assigned to load."
        else:
            message = "Assignment updated."
        _report(request, result, message)

    return redirect("load_detail", load_id=load.pk)


@login_required
@require_POST
@transaction.non_atomic_requests
def change_status(request, load_id, action):
    """
    Driver status actions: arrive, load, depart, arrive_at_delivery, deliver.

    All guards live in `lifecycle.advance`; this view only maps the outcome
    to a message and redirects back (PRG).
    """
    try:
        result = lifecycle.advance(
            request.user, load_id, action, signature=request.POST.get("signature")
        )
    except ServiceError as e:
        messages.error(request, str(e))
    else:
        _report(request, result, f"Load marked as {result.load.get_status_display()}.")

    return redirect("load_detail", load_id=load_id)


@login_required
@require_POST
def checkout(request, load_id):
    """Send the client to Stripe Checkout for a load that requires payment."""
    load = get_object_or_404(loads_for(request.user), pk=load_id)
    try:
        url = payments.create_checkout_session(
            request.user, load, origin=request.build_absolute_uri("/").rstrip("/")
        )
    except ServiceError as e:
        messages.error(request, str(e))
        return redirect("load_detail", load_id=load.pk)
    return redirect(url)


@csrf_exempt
@require_POST
@transaction.non_atomic_requests
def stripe_webhook(request):
    try:
        result = payments.handle_stripe_webhook(
            request.body, request.headers.get("Stripe-Signature")
        )
    except PaymentError as e:
        return HttpResponse(str(e), status=400)
    return JsonResponse(result)


# ============================================================================
# DRIVERS / CLIENTS
# ============================================================================


@login_required
def drivers_list(request):
    """Dispatcher roster; POST provisions a new driver."""
    if not is_dispatcher(request.user):
        messages.error(request, "Only dispatchers can manage drivers.")
        return redirect("dashboard")

    if request.method == "POST":
        form = DriverForm(request.POST)
        if form.is_valid():
            try:
                driver = onboarding.provision_driver(request.user, **form.cleaned_data)
            except ServiceError as e:
                messages.error(request, str(e))
            else:
                messages.success(request, f"Driver {driver.full_name} added.")
                return redirect("drivers_list")
    else:
        form = DriverForm()

    drivers = Driver.objects.filter(is_active=True).select_related("user")
    return render(
        request,
        "freight/drivers_list.html",
        {
            "drivers": drivers,
            "form": form,
            "availability_form": AvailabilityForm(),
        },
    )


@login_required
@require_POST
@transaction.non_atomic_requests
def driver_availability(request, driver_id):
    form = AvailabilityForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Please choose a valid availability.")
        return redirect("dashboard")

    try:
        result = lifecycle.update_driver_availability(
            request.user,
            driver_id,
            form.cleaned_data["availability_status"],
            form.cleaned_data["available_at"],
        )
    except ServiceError as e:
        messages.error(request, str(e))
    else:
        _report(request, result, "Availability updated.")

    if is_dispatcher(request.user):
        return redirect("drivers_list")
    return redirect("dashboard")


@login_required
@require_POST
def deactivate_driver(request, driver_id):
    try:
        driver = onboarding.deactivate_driver(request.user, driver_id)
    except ServiceError as e:
        messages.error(request, str(e))
    else:
        messages.success(request, f"Driver {driver.full_name} removed.")
    return redirect("drivers_list")


@login_required
def clients_list(request):
    if not is_dispatcher(request.user):
        messages.error(request, "Only dispatchers can manage clients.")
        return redirect("dashboard")

    if request.method == "POST":
        form = ClientForm(request.POST)
        if form.is_valid():
            try:
                client = onboarding.provision_client(request.user, **form.cleaned_data)
            except ServiceError as e:
                messages.error(request, str(e))
            else:
                messages.success(request, f"Client {client.full_name} added.")
                return redirect("clients_list")
    else:
        form = ClientForm()

    clients = Client.objects.filter(is_active=True).select_related("user")
    return render(
        request, "freight/clients_list.html", {"clients": clients, "form": form}
    )


@login_required
@require_POST
def deactivate_client(request, client_id):
    try:
        client = onboarding.deactivate_client(request.user, client_id)
    except ServiceError as e:
        messages.error(request, str(e))
    else:
        messages.success(request, f"Client {client.full_name} removed.")
    return redirect("clients_list")


@login_required
def client_profile(request):
    """Clients edit their own contact details."""
    if not is_client(request.user):
        messages.error(request, "Only clients have a profile to edit.")
        return redirect("dashboard")

    profile = Client.objects.filter(user=request.user, is_active=True).first()
    if profile is None:
        messages.error(request, "No client record is linked to this account yet.")
        return redirect("dashboard")

    if request.method == "POST":
        form = ClientProfileForm(request.POST, instance=profile)
        if form.is_valid():
            fields = {name: form.cleaned_data[name] for name in form.Meta.fields}
            try:
                onboarding.update_client_profile(request.user, **fields)
            except ServiceError as e:
                messages.error(request, str(e))
            else:
                messages.success(request, "Profile updated.")
                return redirect("client_profile")
    else:
        form = ClientProfileForm(instance=profile)

    return render(
        request, "freight/client_profile.html", {"form": form, "profile": profile}
    )


# ============================================================================
# NOTIFICATIONS / PUSH
# ============================================================================


@login_required
def notifications_list(request):
    items = Notification.objects.filter(user=request.user).select_related("load")[:50]
    return render(request, "freight/notifications.html", {"notifications": items})


@login_required
@require_POST
def notification_read(request, notification_id):
    try:
        notifications.mark_read(request.user, notification_id)
    except ServiceError as e:
        messages.error(request, str(e))
    return redirect("notifications")


@login_required
@require_POST
def notifications_read_all(request):
    count = notifications.mark_all_read(request.user)
    messages.success(request, f"{count} notification(s) marked as read.")
    return redirect("notifications")


def _json_body(request):
    try:
        return json.loads(request.body or b"{}")
    except ValueError:
        return {}


@login_required
@require_POST
def push_subscribe(request):
    """Register a browser push subscription (PushSubscription.toJSON())."""
    data = _json_body(request)
    keys = data.get("keys") or {}
    try:
        push.subscribe(
            request.user, data.get("endpoint"), keys.get("p256dh"), keys.get("auth")
        )
    except ServiceError as e:
        return JsonResponse({"error": str(e)}, status=400)
    return JsonResponse({"subscribed": True})


@login_required
@require_POST
def push_unsubscribe(request):
    data = _json_body(request)
    removed = push.unsubscribe(request.user, data.get("endpoint"))
    return JsonResponse({"removed": removed})


# ============================================================================
# DISPATCHER INVITES
# ============================================================================


@login_required
def invites(request):
    if not is_dispatcher(request.user):
        messages.error(request, "Only dispatchers can invite dispatchers.")
        return redirect("dashboard")

    if request.method == "POST":
        form = DispatcherInviteForm(request.POST)
        if form.is_valid():
            try:
                invite = onboarding.create_dispatcher_invite(
                    request.user,
                    form.cleaned_data["email"],
                )
            except ServiceError as e:
                messages.error(request, str(e))
            else:
                messages.success(request, f"Invitation sent to {invite.email}.")
                return redirect("invites")
    else:
        form = DispatcherInviteForm()

    sent = request.user.dispatcher_invites.all()
    return render(request, "freight/invites.html", {"form": form, "invites": sent})


@login_required
def accept_invite(request, token):
    """Logged-in user with the invited email becomes a dispatcher."""
    try:
        invite = onboarding.validate_invite_token(token)
    except ServiceError as e:
        messages.error(request, str(e))
        return redirect("dashboard")

    if request.method == "POST":
        try:
            onboarding.accept_dispatcher_invite(token, request.user)
        except ServiceError as e:
            messages.error(request, str(e))
        else:
            messages.success(request, "Welcome to dispatch!")
            return redirect("dashboard")

    return render(request, "freight/accept_invite.html", {"invite": invite})

