"""Seed demo data: dispatcher, clients, drivers and loads at every stage."""

import random

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from factory import random as factory_random
from faker import Faker

from freight import factories
from freight.models import Load
from freight.services import lifecycle
from freight.services.notifications import DispatchReport, NotificationDispatcher

# driver transitions in order, used to walk demo loads forward
WALK = ["arrive", "load", "depart", "arrive_at_delivery", "deliver"]


class QuietDispatcher(NotificationDispatcher):
    """Seeding should not email or push anyone."""

    def notify(self, event_type, payload, **kwargs):
        return DispatchReport(event_type=str(event_type))


class Command(BaseCommand):
    help = "Seed demo data for clients, drivers and loads"

    def add_arguments(self, parser):
        parser.add_argument("--clients", type=int, default=3)
        parser.add_argument("--drivers", type=int, default=4)
        parser.add_argument("--loads", type=int, default=12)
        parser.add_argument(
            "--seed", type=int, default=None, help="Seed for Faker/random"
        )

    @transaction.atomic
    def handle(self, *args, **options):
        seed = options.get("seed")
        if seed is not None:
            random.seed(seed)
            factory_random.reseed_random(seed)
            Faker.seed(seed)
            self.stdout.write(self.style.NOTICE(f"Seeding randomness with seed={seed}"))

        dispatcher = self._get_or_create_user("dispatcher", role="dispatcher")
        self.stdout.write(self.style.SUCCESS(f"Using dispatcher: {dispatcher.username}"))

        self.stdout.write("Creating clients...")
        clients = factories.ClientFactory.create_batch(options["clients"])

        self.stdout.write("Creating drivers...")
        drivers = factories.DriverFactory.create_batch(options["drivers"])

        self.stdout.write("Creating loads...")
        quiet = QuietDispatcher()
        for _ in range(options["loads"]):
            client = random.choice(clients).user
            draft = factories.LoadFactory.build(client=client)
            result = lifecycle.submit_load(
                client,
                notifier=quiet,
                origin_address=draft.origin_address,
                destination_address=draft.destination_address,
                trailer_type=draft.trailer_type,
                weight_lbs=draft.weight_lbs,
                pickup_date=draft.pickup_date,
                delivery_date=draft.delivery_date,
            )
            load = result.load

            # leave some loads Pending for dispatch to work on
            steps = random.randint(-1, len(WALK))
            if steps < 0:
                continue

            driver = random.choice(drivers)
            lifecycle.assign_driver(
                dispatcher,
                load.pk,
                driver.pk,
                driver.truck_number,
                random.randint(800, 4_000) * 100,
                notifier=quiet,
            )
            for action in WALK[:steps]:
                lifecycle.advance(driver.user, load.pk, action, notifier=quiet)

        self.stdout.write(self.style.SUCCESS("Seed complete."))
        by_status = {
            label: Load.objects.filter(status=value).count()
            for value, label in Load.Status.choices
        }
        self.stdout.write(
            self.style.SUCCESS(
                f"Clients: {len(clients)}, Drivers: {len(drivers)}, "
                + ", ".join(f"{label}: {count}" for label, count in by_status.items())
            )
        )

    def _get_or_create_user(self, username: str, role: str):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=username,
            defaults={
                "email": f"{username}@example.com",
                "role": role,
                "is_staff": True,
            },
        )
        if created:
            user.set_password("password123")
            user.save()
        return user
