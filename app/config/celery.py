"""
Celery configuration for the escrow service marketplace.

Workers run:
- payments.tasks: webhook processing and retry, provider refunds,
  the reconciliation sweep
- notifications.tasks: notification email and operator alerts

Periodic schedules live in the database (django-celery-beat) and are
seeded by payments migration 0002.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
