"""
Service request admin configuration.

Workflow state, version and timestamps are read-only: they only change
through lifecycle actions so every change has a RequestTransition row.
"""

from django.contrib import admin

from service_requests.models import DisputeFlag, RequestTransition, ServiceRequest


class RequestTransitionInline(admin.TabularInline):
    model = RequestTransition
    extra = 0
    can_delete = False
    fields = ["created_at", "action", "from_state", "to_state", "actor", "actor_role", "notes"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class DisputeFlagInline(admin.TabularInline):
    model = DisputeFlag
    fk_name = "request"
    extra = 0
    can_delete = False
    fields = ["created_at", "raised_by", "raised_by_role", "reason", "resolved", "resolution", "resolved_by"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ServiceRequest)
class ServiceRequestAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "service_category",
        "requester",
        "helper",
        "workflow_state",
        "scheduled_date",
        "archived_at",
        "created_at",
    ]
    list_filter = ["workflow_state", "urgency_level", "service_category"]
    search_fields = ["id", "requester__email", "helper__email", "service_location"]
    raw_id_fields = ["requester", "helper", "preferred_helper"]
    readonly_fields = [
        "id",
        "workflow_state",
        "version",
        "accepted_at",
        "declined_at",
        "started_at",
        "completed_at",
        "confirmed_at",
        "cancelled_at",
        "archived_at",
        "created_at",
        "updated_at",
    ]
    inlines = [DisputeFlagInline, RequestTransitionInline]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "requester", "helper", "preferred_helper")}),
        (
            "Details",
            {
                "fields": (
                    "service_category",
                    "description",
                    "contact",
                    "service_location",
                    "scheduled_date",
                    "scheduled_time",
                    "urgency_level",
                ),
            },
        ),
        (
            "Workflow",
            {
                "fields": (
                    "workflow_state",
                    "cancel_deadline",
                    "viewed_by_helper",
                    "accepted_at",
                    "declined_at",
                    "started_at",
                    "completed_at",
                    "confirmed_at",
                    "cancelled_at",
                    "archived_at",
                ),
            },
        ),
        ("Review", {"fields": ("rating", "feedback")}),
        ("Metadata", {"fields": ("version", "created_at", "updated_at"), "classes": ("collapse",)}),
    )


@admin.register(DisputeFlag)
class DisputeFlagAdmin(admin.ModelAdmin):
    """Disputes are resolved through payment release/refund, not edited here."""

    list_display = ["id", "request", "raised_by", "raised_by_role", "resolved", "resolution", "created_at"]
    list_filter = ["resolved", "resolution", "raised_by_role"]
    search_fields = ["id", "request__id", "raised_by__email"]
    readonly_fields = [
        "id",
        "request",
        "raised_by",
        "raised_by_role",
        "reason",
        "state_at_raise",
        "resolved",
        "resolved_at",
        "resolved_by",
        "resolution",
        "created_at",
        "updated_at",
    ]

    def has_add_permission(self, request):
        return False
