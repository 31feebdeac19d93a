from .base import *  # noqa: F401,F403

SECRET_KEY = "test-secret-key"
DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
        "ATOMIC_REQUESTS": True,
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
DEFAULT_FROM_EMAIL = "Road Runner Express <test@example.com>"
SITE_URL = "http://testserver"

STRIPE_SECRET_KEY = ""
STRIPE_WEBHOOK_SECRET = ""

VAPID_PUBLIC_KEY = ""
VAPID_PRIVATE_KEY = ""

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
