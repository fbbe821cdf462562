"""
Factory Boy factories for notification models.

Usage:
    from notifications.tests.factories import NotificationDeliveryFactory, NotificationFactory

    notification = NotificationFactory(recipient=user)
    delivery = NotificationDeliveryFactory(notification=notification)
"""

import factory

from authentication.tests.factories import UserFactory
from notifications.models import DeliveryChannel, DeliveryStatus, Notification, NotificationDelivery


class NotificationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Notification
        skip_postgeneration_save = True

    recipient = factory.SubFactory(UserFactory)
    event = "request.accepted"
    title = "Your request was accepted"
    body = "A helper has accepted your request."
    data = factory.LazyFunction(dict)
    is_read = False
    idempotency_key = factory.Sequence(lambda n: f"request.accepted:evt-{n}:recipient")


class NotificationDeliveryFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = NotificationDelivery
        skip_postgeneration_save = True

    notification = factory.SubFactory(NotificationFactory)
    channel = DeliveryChannel.EMAIL
    status = DeliveryStatus.PENDING
