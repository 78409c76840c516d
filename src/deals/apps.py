"""App config for the deals module."""
from django.apps import AppConfig


class DealsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "deals"
    verbose_name = "Affaires"

    def ready(self):
        import deals.signals  # noqa: F401
