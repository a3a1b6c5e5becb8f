"""Celery application for offer timers and periodic maintenance."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "errand_hub.settings")

app = Celery("errand_hub")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
