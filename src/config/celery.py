"""Celery configuration."""
import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault(
    "DJANGO_SETTINGS_MODULE",
    os.getenv("DJANGO_SETTINGS_MODULE", "config.settings.dev"),
)

app = Celery("quotaflow")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

# Beat schedule
app.conf.beat_schedule = {
    "recalculate-missing-commissions": {
        "task": "commissions.tasks.recalculate_missing_commissions",
        "schedule": crontab(minute=0, hour=2),  # Daily at 2am
    },
    "backfill-target-names": {
        "task": "targets.tasks.backfill_target_names_task",
        "schedule": crontab(minute=30, hour=2),  # Daily
    },
}
