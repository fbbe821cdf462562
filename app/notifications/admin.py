"""
Django admin configuration for notification models.

Notifications are read-only records; failed email deliveries can be
re-queued from the delivery list.
"""

from django.contrib import admin

from notifications.models import DeliveryStatus, Notification, NotificationDelivery
from notifications.tasks import send_email_notification


class NotificationDeliveryInline(admin.TabularInline):
    model = NotificationDelivery
    extra = 0
    can_delete = False
    readonly_fields = [
        "channel",
        "status",
        "attempt_count",
        "sent_at",
        "failed_at",
        "failure_code",
        "skip_reason",
    ]
    fields = readonly_fields


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ["id", "event", "recipient", "title", "is_read", "created_at"]
    list_filter = ["event", "is_read", "created_at"]
    search_fields = ["recipient__email", "title", "idempotency_key"]
    raw_id_fields = ["recipient"]
    readonly_fields = [
        "recipient",
        "event",
        "title",
        "body",
        "data",
        "is_read",
        "read_at",
        "idempotency_key",
        "created_at",
        "updated_at",
    ]
    inlines = [NotificationDeliveryInline]
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False


@admin.register(NotificationDelivery)
class NotificationDeliveryAdmin(admin.ModelAdmin):
    list_display = ["id", "notification", "channel", "status", "attempt_count", "failure_code", "created_at"]
    list_filter = ["status", "channel"]
    search_fields = ["notification__recipient__email", "failure_code"]
    raw_id_fields = ["notification"]
    readonly_fields = [
        "notification",
        "channel",
        "status",
        "attempt_count",
        "sent_at",
        "failed_at",
        "failure_code",
        "failure_reason",
        "skip_reason",
        "created_at",
        "updated_at",
    ]
    actions = ["requeue"]

    def has_add_permission(self, request):
        return False

    @admin.action(description="Re-queue failed deliveries")
    def requeue(self, request, queryset):
        failed = list(queryset.filter(status=DeliveryStatus.FAILED).values_list("pk", flat=True))
        queryset.filter(pk__in=failed).update(status=DeliveryStatus.PENDING, failure_code="", failure_reason="")
        for delivery_id in failed:
            send_email_notification.delay(delivery_id)
        self.message_user(request, f"Re-queued {len(failed)} deliveries.")
