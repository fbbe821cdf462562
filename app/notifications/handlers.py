"""
Domain event receivers for the notifications app.

Connected in NotificationsConfig.ready(). core.events delivers with
send_robust after commit, so an exception here is logged by the sender
and never reaches the transition that emitted the event.
"""

from __future__ import annotations

from django.dispatch import receiver

from core.events import domain_event
from notifications.services import NotificationService


@receiver(domain_event, dispatch_uid="notifications.on_domain_event")
def on_domain_event(sender, event, payload, **kwargs):
    NotificationService.notify_event(event, payload)
