"""
Payment admin configuration.

Money state is read-only here: escrow moves only through EscrowService
so every change has ledger entries. Admins release/refund through the
API; the admin site is for inspection and the discrepancy review queue.
"""

from django.contrib import admin
from django.utils import timezone

from payments.ledger.admin import LedgerAccountAdmin, LedgerEntryAdmin
from payments.models import (
    Payment,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    WebhookEvent,
)
from payments.tasks import process_webhook_event

__all__ = [
    "LedgerAccountAdmin",
    "LedgerEntryAdmin",
    "PaymentAdmin",
    "ReconciliationDiscrepancyAdmin",
    "ReconciliationRunAdmin",
    "WebhookEventAdmin",
]


# =============================================================================
# Payment Admin
# =============================================================================


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "request",
        "payer",
        "amount_display",
        "gateway",
        "escrow_state",
        "trust_level",
        "provider_refund_status",
        "held_at",
        "created_at",
    ]
    list_filter = ["escrow_state", "gateway", "trust_level", "provider_refund_status"]
    search_fields = [
        "id",
        "request__id",
        "payer__email",
        "gateway_reference",
        "gateway_transaction_id",
    ]
    raw_id_fields = ["request", "payer", "released_by", "refunded_by"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "request", "payer", "amount", "currency", "gateway")}),
        (
            "Provider",
            {
                "fields": (
                    "gateway_reference",
                    "gateway_transaction_id",
                    "captured_amount",
                    "trust_level",
                    "verified_at",
                    "intent_data",
                ),
            },
        ),
        (
            "Escrow",
            {
                "fields": (
                    "escrow_state",
                    "held_at",
                    "released_at",
                    "released_by",
                    "refunded_at",
                    "refunded_by",
                    "admin_override",
                    "settlement_notes",
                ),
            },
        ),
        (
            "Provider Refund",
            {"fields": ("provider_refund_status", "provider_refund_reference", "failure_reason")},
        ),
        ("Timeline", {"fields": ("events", "metadata"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at")}),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    @admin.display(description="Amount")
    def amount_display(self, obj: Payment) -> str:
        return f"{obj.amount / 100:.2f} {obj.currency.upper()}"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


# =============================================================================
# Webhook Admin
# =============================================================================


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Webhook processing status.

    Events are immutable once received; failed ones can be re-queued.
    """

    list_display = [
        "id",
        "provider",
        "event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["provider", "status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "event_type"]
    readonly_fields = [
        "id",
        "provider",
        "event_id",
        "event_type",
        "payload",
        "status",
        "processed_at",
        "retry_count",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue"]

    fieldsets = (
        (None, {"fields": ("id", "provider", "event_id", "event_type", "status")}),
        ("Processing", {"fields": ("processed_at", "retry_count")}),
        ("Error Info", {"fields": ("error_message",), "classes": ("collapse",)}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.action(description="Re-queue selected unprocessed events")
    def requeue(self, request, queryset):
        count = 0
        for webhook_event in queryset.exclude(status="processed"):
            process_webhook_event.delay(str(webhook_event.id))
            count += 1
        self.message_user(request, f"Queued {count} webhook events.")

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


# =============================================================================
# Reconciliation Admin
# =============================================================================


class ReconciliationDiscrepancyInline(admin.TabularInline):
    model = ReconciliationDiscrepancy
    extra = 0
    readonly_fields = [
        "id",
        "discrepancy_type",
        "payment_id",
        "request_id",
        "request_state",
        "escrow_state",
        "reviewed",
    ]
    fields = readonly_fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """Runs are created by the reconciliation sweep; history only."""

    list_display = [
        "id",
        "started_at",
        "status",
        "duration_display",
        "payments_checked",
        "discrepancies_found",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["id"]
    readonly_fields = [
        "id",
        "status",
        "started_at",
        "completed_at",
        "duration_display",
        "stale_hold_hours",
        "payments_checked",
        "discrepancies_found",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]
    inlines = [ReconciliationDiscrepancyInline]

    @admin.display(description="Duration")
    def duration_display(self, obj: ReconciliationRun) -> str:
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ReconciliationDiscrepancy)
class ReconciliationDiscrepancyAdmin(admin.ModelAdmin):
    """Review queue: operators investigate and mark divergences reviewed."""

    list_display = [
        "id",
        "run_link",
        "discrepancy_type",
        "payment_id",
        "request_id",
        "request_state",
        "escrow_state",
        "reviewed",
        "created_at",
    ]
    list_filter = ["discrepancy_type", "reviewed", "created_at"]
    search_fields = ["id", "payment_id", "request_id"]
    readonly_fields = [
        "id",
        "run",
        "discrepancy_type",
        "payment_id",
        "request_id",
        "request_state",
        "escrow_state",
        "details",
        "reviewed",
        "reviewed_at",
        "reviewed_by",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_reviewed"]

    @admin.display(description="Run")
    def run_link(self, obj: ReconciliationDiscrepancy) -> str:
        return str(obj.run_id)[:8] if obj.run_id else "-"

    @admin.action(description="Mark selected discrepancies as reviewed")
    def mark_reviewed(self, request, queryset):
        count = queryset.filter(reviewed=False).update(
            reviewed=True,
            reviewed_at=timezone.now(),
            reviewed_by=request.user,
        )
        self.message_user(request, f"Marked {count} discrepancies as reviewed.")

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
