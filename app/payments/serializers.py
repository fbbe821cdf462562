"""
DRF serializers for payments app.

Serializer Hierarchy:
    PaymentSerializer: Read shape (split, timeline; intent_data for the payer only)
    CreateIntentSerializer / ConfirmPaymentSerializer / VerifyTransferSerializer: Capture inputs
    SettlementSerializer: Admin release/refund input
    HelperEarningsSerializer / RequesterSpendSerializer: Dashboards
    WithdrawalSerializer / LedgerEntrySerializer: Admin withdrawal record

Usage:
    serializer = PaymentSerializer(payment, context={"request": request})
    data = serializer.data
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from payments.ledger.models import LedgerEntry
from payments.models import Payment
from payments.services import split
from payments.state_machines import GatewayType

User = get_user_model()


class PaymentSerializer(serializers.ModelSerializer):
    """
    Payment representation.

    intent_data carries the client secret / order id, so only the payer
    and admins see it.
    """

    request_id = serializers.UUIDField(read_only=True)
    payer_id = serializers.IntegerField(read_only=True)
    helper_share = serializers.SerializerMethodField()
    platform_fee = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            "id",
            "request_id",
            "payer_id",
            "amount",
            "currency",
            "gateway",
            "gateway_reference",
            "intent_data",
            "escrow_state",
            "trust_level",
            "captured_amount",
            "helper_share",
            "platform_fee",
            "held_at",
            "released_at",
            "refunded_at",
            "verified_at",
            "admin_override",
            "provider_refund_status",
            "provider_refund_reference",
            "failure_reason",
            "events",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_helper_share(self, obj) -> int:
        return split(obj.amount).helper_share

    def get_platform_fee(self, obj) -> int:
        return split(obj.amount).platform_fee

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if user is None or (user.pk != instance.payer_id and user.role != User.Role.ADMIN):
            data.pop("intent_data", None)
        return data


class CreateIntentSerializer(serializers.Serializer):
    request_id = serializers.UUIDField()
    amount = serializers.IntegerField(min_value=1, help_text="Minor units")
    gateway = serializers.ChoiceField(choices=GatewayType.choices)


class ConfirmPaymentSerializer(serializers.Serializer):
    """
    Client-side proof from the checkout widget.

    card: {"payment_intent_id"}
    regional_gateway: {"razorpay_order_id", "razorpay_payment_id", "razorpay_signature"}
    """

    proof = serializers.DictField(child=serializers.CharField(), allow_empty=True, default=dict)


class VerifyTransferSerializer(serializers.Serializer):
    request_id = serializers.UUIDField()
    transaction_ref = serializers.CharField(max_length=64)
    transaction_id = serializers.CharField(max_length=255)


class SettlementSerializer(serializers.Serializer):
    request_id = serializers.UUIDField()
    admin_override = serializers.BooleanField(default=False)
    resolve_dispute = serializers.BooleanField(default=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if attrs["admin_override"] and not attrs["notes"].strip():
            raise serializers.ValidationError({"notes": ["Required when overriding."]})
        return attrs


class HelperEarningsSerializer(serializers.Serializer):
    pending = serializers.IntegerField()
    released = serializers.IntegerField()
    withdrawn = serializers.IntegerField()
    withdrawable = serializers.IntegerField()
    currency = serializers.CharField()


class RequesterSpendSerializer(serializers.Serializer):
    held = serializers.IntegerField()
    released = serializers.IntegerField()
    refunded = serializers.IntegerField()
    currency = serializers.CharField()


class WithdrawalSerializer(serializers.Serializer):
    helper_id = serializers.PrimaryKeyRelatedField(
        source="helper",
        queryset=User.objects.filter(role=User.Role.HELPER),
    )
    amount = serializers.IntegerField(min_value=1)
    reference = serializers.CharField(max_length=128)


class LedgerEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = LedgerEntry
        fields = ["id", "entry_type", "amount", "currency", "description", "metadata", "created_at"]
        read_only_fields = fields
