"""Initial payments schema: ledger, payments, webhook events, reconciliation."""

import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

UUID_PK = {
    "default": uuid.uuid4,
    "editable": False,
    "help_text": "Unique identifier for this record",
    "primary_key": True,
    "serialize": False,
}


def created_at():
    return models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )


def updated_at():
    return models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("service_requests", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # =====================================================================
        # Ledger
        # =====================================================================
        migrations.CreateModel(
            name="LedgerAccount",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("helper_balance", "Helper Balance"),
                            ("platform_escrow", "Platform Escrow"),
                            ("platform_revenue", "Platform Revenue"),
                            ("external_gateway", "External Gateway"),
                        ],
                        help_text="Category of this account",
                        max_length=50,
                    ),
                ),
                (
                    "owner_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Id of the owning entity (e.g., helper user id); blank for platform accounts",
                        max_length=64,
                    ),
                ),
                ("currency", models.CharField(default="inr", help_text="ISO 4217 currency code", max_length=3)),
                (
                    "allow_negative",
                    models.BooleanField(default=False, help_text="Whether this account can have a negative balance"),
                ),
                (
                    "is_active",
                    models.BooleanField(db_index=True, default=True, help_text="Whether this account is active"),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this account was created",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["type", "currency"], name="ledger_account_type_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("type", "owner_id", "currency"),
                        name="unique_account_per_owner",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this entry was recorded",
                    ),
                ),
                ("amount", models.PositiveBigIntegerField(help_text="Amount in minor units (always positive)")),
                ("currency", models.CharField(help_text="ISO 4217 currency code", max_length=3)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("payment_held", "Payment Held"),
                            ("payment_released", "Payment Released"),
                            ("fee_collected", "Fee Collected"),
                            ("refund", "Refund"),
                            ("withdrawal", "Withdrawal"),
                            ("adjustment", "Adjustment"),
                        ],
                        db_index=True,
                        help_text="Category of this entry",
                        max_length=50,
                    ),
                ),
                (
                    "reference_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="UUID of related business entity",
                        null=True,
                    ),
                ),
                (
                    "reference_type",
                    models.CharField(
                        blank=True,
                        help_text="Type of related entity (e.g., 'payment')",
                        max_length=50,
                        null=True,
                    ),
                ),
                ("description", models.TextField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        help_text="Service or user that created this entry",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "credit_account",
                    models.ForeignKey(
                        help_text="Account money is added to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credits",
                        to="payments.ledgeraccount",
                    ),
                ),
                (
                    "debit_account",
                    models.ForeignKey(
                        help_text="Account money is taken from",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="debits",
                        to="payments.ledgeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "ledger entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["reference_type", "reference_id"], name="ledger_entry_reference_idx"),
                    models.Index(fields=["entry_type", "created_at"], name="ledger_entry_type_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="ledger_entry_amount_positive",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Payment
        # =====================================================================
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("amount", models.PositiveBigIntegerField(help_text="Amount in minor units (e.g., 49900 = 499.00)")),
                ("currency", models.CharField(default="inr", help_text="ISO 4217 currency code", max_length=3)),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("card", "Card"),
                            ("regional_gateway", "Regional Gateway"),
                            ("manual_transfer", "Manual Transfer"),
                        ],
                        help_text="Payment rail used to fund escrow",
                        max_length=32,
                    ),
                ),
                (
                    "gateway_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider intent/order id, or manual transfer reference code",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider payment id, or user-supplied transaction id",
                        max_length=255,
                    ),
                ),
                (
                    "intent_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Client-facing intent payload returned by createIntent",
                    ),
                ),
                (
                    "escrow_state",
                    django_fsm.FSMField(
                        choices=[
                            ("none", "None"),
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="none",
                        help_text="Escrow state of the money (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "trust_level",
                    models.CharField(
                        choices=[("verified", "Verified"), ("low", "Low")],
                        default="verified",
                        help_text="Integrity of the capture proof",
                        max_length=16,
                    ),
                ),
                (
                    "captured_amount",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount reported captured by the provider",
                        null=True,
                    ),
                ),
                (
                    "verified_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a manual transfer reference was verified",
                        null=True,
                    ),
                ),
                ("held_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "admin_override",
                    models.BooleanField(
                        default=False,
                        help_text="Released or refunded outside the normal precondition",
                    ),
                ),
                (
                    "settlement_notes",
                    models.TextField(blank=True, help_text="Admin notes recorded with release/refund"),
                ),
                (
                    "provider_refund_status",
                    models.CharField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending"),
                            ("submitted", "Submitted"),
                            ("completed", "Completed"),
                            ("manual", "Manual Pay-back Required"),
                            ("failed", "Failed"),
                        ],
                        default="not_required",
                        help_text="Refund status at the provider after a ledger refund",
                        max_length=20,
                    ),
                ),
                (
                    "provider_refund_reference",
                    models.CharField(blank=True, help_text="Provider refund id", max_length=255),
                ),
                (
                    "failure_reason",
                    models.TextField(blank=True, help_text="Last capture failure (e.g., amount mismatch)"),
                ),
                ("events", models.JSONField(blank=True, default=list, help_text="Timeline of payment actions")),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Arbitrary JSON metadata")),
                (
                    "payer",
                    models.ForeignKey(
                        help_text="Requester making the payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "refunded_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who refunded (null for system refunds)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "released_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who released the funds",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "request",
                    models.ForeignKey(
                        help_text="Service request funded by this payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="service_requests.servicerequest",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["escrow_state", "held_at"], name="payment_state_held_idx"),
                    models.Index(fields=["payer", "escrow_state"], name="payment_payer_state_idx"),
                    models.Index(fields=["gateway", "gateway_reference"], name="payment_gateway_ref_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("escrow_state", "refunded"), _negated=True),
                        fields=("request",),
                        name="one_live_payment_per_request",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Webhooks
        # =====================================================================
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "provider",
                    models.CharField(
                        choices=[("stripe", "Stripe"), ("regional", "Regional Gateway")],
                        help_text="Webhook source",
                        max_length=20,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(help_text="Provider event id (unique per provider)", max_length=255),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Provider event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full webhook payload")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="webhook_status_idx"),
                    models.Index(fields=["event_type", "created_at"], name="webhook_type_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("provider", "event_id"),
                        name="unique_webhook_event_per_provider",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Reconciliation
        # =====================================================================
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("started_at", models.DateTimeField(help_text="When this reconciliation run started")),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When this reconciliation run completed (or failed)",
                        null=True,
                    ),
                ),
                (
                    "stale_hold_hours",
                    models.PositiveIntegerField(help_text="Threshold used for stale confirmed holds"),
                ),
                ("payments_checked", models.PositiveIntegerField(default=0)),
                ("discrepancies_found", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[("running", "Running"), ("completed", "Completed"), ("failed", "Failed")],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(blank=True)),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["status", "started_at"], name="recon_run_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationDiscrepancy",
            fields=[
                ("id", models.UUIDField(**UUID_PK)),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                (
                    "discrepancy_type",
                    models.CharField(
                        choices=[
                            ("stale_confirmed_hold", "Confirmed but still held"),
                            ("cancelled_with_hold", "Cancelled but still held"),
                            ("settled_not_archived", "Settled but request not archived"),
                            ("missing_hold_entry", "Held without ledger entry"),
                            ("settlement_entry_mismatch", "Settlement entries mismatch"),
                            ("dispute_open_after_settlement", "Dispute open after settlement"),
                        ],
                        db_index=True,
                        max_length=50,
                    ),
                ),
                ("payment_id", models.UUIDField(blank=True, null=True)),
                ("request_id", models.UUIDField(blank=True, null=True)),
                ("request_state", models.CharField(blank=True, max_length=50)),
                ("escrow_state", models.CharField(blank=True, max_length=50)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("reviewed", models.BooleanField(db_index=True, default=False)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("review_notes", models.TextField(blank=True)),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reviewed_discrepancies",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discrepancies",
                        to="payments.reconciliationrun",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Reconciliation discrepancies",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["reviewed", "discrepancy_type"], name="recon_disc_review_idx"),
                    models.Index(fields=["payment_id"], name="recon_disc_payment_idx"),
                ],
            },
        ),
    ]
