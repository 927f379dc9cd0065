# config/settings/test.py
from .base import *  # noqa

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REALTIME_SUBSCRIBER_QUEUE_SIZE = 8
REALTIME_STREAM_HEARTBEAT_SECONDS = 0.01
REALTIME_STREAM_MAX_SECONDS = 0.05

# propagate to root so pytest caplog sees application records
LOGGING["loggers"]["clinic_core"].update({"level": "WARNING", "handlers": [], "propagate": True})  # noqa: F405
