"""
Notification service layer.

Services:
    NotificationService: Turn domain events into notifications and manage
        read state

Design Principles:
    - Services are stateless (use class methods)
    - Recipients and templates come from notifications.catalog
    - One Notification per recipient per event occurrence (event_id)
    - Email deliveries are queued after the rows commit

Usage:
    from notifications.services import NotificationService

    NotificationService.notify_event("payment.released", payload)
    NotificationService.mark_as_read(notification_id, user)
    NotificationService.mark_all_as_read(user)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService
from notifications.catalog import CATALOG, EventMessage
from notifications.models import DeliveryChannel, Notification, NotificationDelivery

if TYPE_CHECKING:
    from authentication.models import User


class NotificationService(BaseService):
    """
    Creation and read-state management for notifications.

    Methods:
        notify_event: Fan a domain event out to its recipients
        for_user: Queryset of a user's notifications
        mark_as_read: Mark one notification read (idempotent)
        mark_all_as_read: Bulk mark a user's notifications read
        unread_count: Number of unread notifications
    """

    @classmethod
    def recipients_for(cls, entry: EventMessage, payload: dict) -> list[User]:
        """Resolve active recipient users for an event, actor excluded where configured."""
        user_model = get_user_model()
        ids = [payload[key] for key in entry.recipients if payload.get(key) is not None]
        if entry.notify_admins:
            ids += list(
                user_model.objects.filter(role=user_model.Role.ADMIN, is_active=True).values_list("pk", flat=True)
            )
        if entry.exclude_actor and payload.get("actor_id") is not None:
            ids = [pk for pk in ids if pk != payload["actor_id"]]
        # dict.fromkeys keeps first-seen order
        ids = list(dict.fromkeys(ids))
        users = user_model.objects.in_bulk(ids)
        return [users[pk] for pk in ids if pk in users and users[pk].is_active]

    @classmethod
    def notify_event(cls, event: str, payload: dict) -> list[Notification]:
        """
        Create notifications for every recipient of ``event``.

        Unknown events are ignored. Redelivery of the same event occurrence
        does not create duplicates.

        Raises:
            KeyError: A template references a key missing from the payload
        """
        entry = CATALOG.get(event)
        if entry is None:
            cls.get_logger().debug("No notification for event", extra={"event": event})
            return []

        title, body = entry.render(payload)
        data = entry.data_for(payload)
        event_id = payload.get("event_id", "")
        created: list[Notification] = []

        with transaction.atomic():
            for user in cls.recipients_for(entry, payload):
                notification, was_created = Notification.objects.get_or_create(
                    idempotency_key=f"{event}:{event_id}:{user.pk}",
                    defaults={
                        "recipient": user,
                        "event": event,
                        "title": title,
                        "body": body,
                        "data": data,
                    },
                )
                if not was_created:
                    continue
                delivery = NotificationDelivery.objects.create(
                    notification=notification,
                    channel=DeliveryChannel.EMAIL,
                )
                cls._queue_email(delivery.pk)
                created.append(notification)

            if entry.alert_operators and settings.ADMIN_NOTIFICATION_EMAIL:
                cls._queue_operator_alert(title, body)

        cls.get_logger().info(
            "Notifications created",
            extra={"event": event, "event_id": event_id, "count": len(created)},
        )
        return created

    @staticmethod
    def _queue_email(delivery_id: int) -> None:
        from notifications.tasks import send_email_notification

        transaction.on_commit(lambda: send_email_notification.delay(delivery_id), robust=True)

    @staticmethod
    def _queue_operator_alert(subject: str, body: str) -> None:
        from notifications.tasks import send_operator_alert

        transaction.on_commit(lambda: send_operator_alert.delay(subject, body), robust=True)

    # =========================================================================
    # Read state
    # =========================================================================

    @staticmethod
    def for_user(user: User, unread_only: bool = False) -> QuerySet[Notification]:
        queryset = Notification.objects.filter(recipient=user)
        if unread_only:
            queryset = queryset.filter(is_read=False)
        return queryset

    @classmethod
    def mark_as_read(cls, notification_id, user: User) -> Notification:
        """
        Mark a single notification as read.

        Raises:
            NotFoundError: No such notification for this user
        """
        try:
            notification = Notification.objects.get(pk=notification_id, recipient=user)
        except Notification.DoesNotExist as e:
            raise NotFoundError(
                "Notification not found",
                details={"notification_id": str(notification_id)},
            ) from e

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=["is_read", "read_at", "updated_at"])
        return notification

    @classmethod
    def mark_all_as_read(cls, user: User) -> int:
        now = timezone.now()
        count = Notification.objects.filter(recipient=user, is_read=False).update(
            is_read=True,
            read_at=now,
            updated_at=now,
        )
        cls.get_logger().info(
            "Marked notifications read",
            extra={"user_id": user.pk, "count": count},
        )
        return count

    @staticmethod
    def unread_count(user: User) -> int:
        return Notification.objects.filter(recipient=user, is_read=False).count()
