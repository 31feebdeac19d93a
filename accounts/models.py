from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Custom user model extending Django's AbstractUser."""

    # Django’s enum pattern for model fields.
    class Role(models.TextChoices):
        # actual value stored in the database, human-readable name
        CLIENT = "client", "Client"
        DISPATCHER = "dispatcher", "Dispatcher"
        DRIVER = "driver", "Driver"

    role = models.CharField(
        choices=Role.choices,
        default=Role.CLIENT,
        max_length=20,
        help_text="User role for permission management",
    )
    email = models.EmailField(unique=True)

    # timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.get_full_name() or self.username} ({self.role})"
