"""Development settings."""
from .base import *  # noqa: F401,F403

DEBUG = True

# Email
EMAIL_BACKEND = env(
    "EMAIL_BACKEND",
    default="django.core.mail.backends.console.EmailBackend",
)  # noqa: F405

# CORS
CORS_ALLOW_ALL_ORIGINS = True

# Logging
LOG_DIR.mkdir(parents=True, exist_ok=True)  # noqa: F405
LOGGING["root"]["level"] = "DEBUG"  # noqa: F405
