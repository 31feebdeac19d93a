from django.contrib import messages
from django.contrib.auth import login
from django.shortcuts import redirect, render
from django.utils.http import url_has_allowed_host_and_scheme

from freight.services.onboarding import link_account

from .forms import SignupForm


def signup(request):
    """
    Create an account and link it to any driver/client record dispatch has
    already provisioned for the same email.
    """
    if request.user.is_authenticated:
        return redirect("dashboard")

    next_url = request.POST.get("next") or request.GET.get("next")
    if not url_has_allowed_host_and_scheme(
        next_url, allowed_hosts={request.get_host()}
    ):
        next_url = None

    if request.method == "POST":
        form = SignupForm(request.POST)
        if form.is_valid():
            user = form.save()
            record = link_account(user)
            login(request, user, backend="django.contrib.auth.backends.ModelBackend")
            if record is not None:
                messages.success(request, f"Welcome, {record.full_name}!")
            else:
                messages.success(request, "Your account has been created.")
            return redirect(next_url or "dashboard")
    else:
        form = SignupForm()

    return render(request, "registration/signup.html", {"form": form, "next": next_url})
