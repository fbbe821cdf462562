"""
Add celery-beat schedules for payment maintenance tasks.

- Reconciliation sweep every RECONCILIATION_INTERVAL_MINUTES (default 15)
- Webhook retry every 5 minutes
- Stuck-webhook reset every 30 minutes
"""

from django.conf import settings
from django.db import migrations

PERIODIC_TASKS = [
    (
        "Escrow Reconciliation Sweep",
        "payments.tasks.run_reconciliation",
        lambda: getattr(settings, "RECONCILIATION_INTERVAL_MINUTES", 15),
        "Detects divergence between request state, payment state and the ledger.",
    ),
    (
        "Retry Failed Webhooks",
        "payments.tasks.retry_failed_webhooks",
        lambda: 5,
        "Re-queues failed or never-queued provider webhook events.",
    ),
    (
        "Reset Stuck Webhooks",
        "payments.tasks.cleanup_stuck_webhooks",
        lambda: 30,
        "Marks webhook events stuck in processing as failed so they are retried.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(every=every(), period="minutes")
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")
    PeriodicTask.objects.filter(name__in=[name for name, *_ in PERIODIC_TASKS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
