import pytest

from freight import factories
from freight.services import lifecycle
from freight.services.notifications import DispatchReport, NotificationDispatcher


class RecordingDispatcher(NotificationDispatcher):
    """Records every notify() call instead of sending anything."""

    def __init__(self):
        self.calls = []

    def notify(self, event_type, payload, **kwargs):
        self.calls.append({"event_type": event_type, "payload": payload, **kwargs})
        return DispatchReport(event_type=str(event_type))

    @property
    def events(self):
        return [call["event_type"] for call in self.calls]


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    """Signature uploads go to a throwaway directory."""
    settings.MEDIA_ROOT = tmp_path / "media"
    return settings.MEDIA_ROOT


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def user_factory():
    return factories.UserFactory


@pytest.fixture
def driver_factory():
    return factories.DriverFactory


@pytest.fixture
def client_factory():
    return factories.ClientFactory


@pytest.fixture
def load_factory():
    return factories.LoadFactory


@pytest.fixture
def notification_factory():
    return factories.NotificationFactory


@pytest.fixture
def push_subscription_factory():
    return factories.PushSubscriptionFactory


@pytest.fixture
def invite_factory():
    return factories.DispatcherInviteFactory


@pytest.fixture
def dispatcher():
    return factories.DispatcherFactory()


@pytest.fixture
def client_user():
    return factories.ClientFactory().user


@pytest.fixture
def driver():
    """Linked, available Driver record."""
    return factories.DriverFactory()


@pytest.fixture
def pending_load(client_user):
    return factories.LoadFactory(client=client_user)


@pytest.fixture
def advance_to(dispatcher, driver, recorder):
    """
    Walk a Pending load forward through the real lifecycle operations.

    advance_to(load, "Loaded") assigns `driver` and performs each driver
    step until the load reaches the requested status.
    """
    steps = {
        "Arrived": ["arrive"],
        "Loaded": ["arrive", "load"],
        "In-Transit": ["arrive", "load", "depart"],
        "Arrived at Delivery": ["arrive", "load", "depart", "arrive_at_delivery"],
        "Delivered": ["arrive", "load", "depart", "deliver"],
    }

    def _advance(load, status, eta=None):
        lifecycle.assign_driver(
            dispatcher,
            load.pk,
            driver.pk,
            driver.truck_number,
            150_000,
            eta,
            notifier=recorder,
        )
        for action in steps.get(status, []):
            lifecycle.advance(driver.user, load.pk, action, notifier=recorder)
        load.refresh_from_db()
        recorder.calls.clear()
        return load

    return _advance
