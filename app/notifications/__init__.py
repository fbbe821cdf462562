"""
Notifications app: in-app records and email for domain events.

Request, dispute, payment and reconciliation events emitted through
core.events become Notification rows for each party (and administrators
where relevant), each with an email delivery sent by celery.

Usage:
    from notifications.services import NotificationService

    NotificationService.mark_all_as_read(user)
"""
