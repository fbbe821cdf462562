"""
Django admin configuration for ledger models.

Ledger entries are read-only here; corrections are new ADJUSTMENT
entries recorded through LedgerService.
"""

from django.contrib import admin

from .models import LedgerAccount, LedgerEntry


@admin.register(LedgerAccount)
class LedgerAccountAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "type",
        "owner_id",
        "currency",
        "balance_display",
        "is_active",
        "allow_negative",
        "created_at",
    ]
    list_filter = ["type", "currency", "is_active", "allow_negative"]
    search_fields = ["id", "owner_id"]
    readonly_fields = ["id", "created_at", "balance_display"]
    ordering = ["-created_at"]

    @admin.display(description="Balance")
    def balance_display(self, obj: LedgerAccount) -> str:
        return f"{obj.get_balance() / 100:.2f} {obj.currency.upper()}"


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "created_at",
        "entry_type",
        "amount_display",
        "debit_account",
        "credit_account",
        "reference_type",
        "created_by",
    ]
    list_filter = ["entry_type", "reference_type", "created_at"]
    search_fields = ["id", "idempotency_key", "reference_id", "description", "created_by"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: LedgerEntry) -> str:
        return f"{obj.amount / 100:.2f} {obj.currency.upper()}"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
