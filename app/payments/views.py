"""
DRF views for payments app.

URL Structure:
    /api/v1/payments/                       GET  (own / assigned / all)
    /api/v1/payments/{id}/                  GET
    /api/v1/payments/intent/                POST (requester)
    /api/v1/payments/{id}/confirm/          POST (payer, card or regional)
    /api/v1/payments/verify/                POST (payer, manual transfer)
    /api/v1/payments/release/               POST (admin)
    /api/v1/payments/refund/                POST (admin)
    /api/v1/payments/withdrawals/           POST (admin)
    /api/v1/payments/earnings/              GET  (helper earnings / requester spend)
    /api/v1/payments/summary/               GET  (admin)
    /api/v1/payments/gateway-config/        GET
    /api/v1/payments/webhooks/stripe/       POST (provider, see payments.webhooks)
    /api/v1/payments/webhooks/regional/     POST (provider)

Security:
    - All endpoints require authentication except webhooks
    - Role/party rules are enforced in the service layer; the admin-only
      endpoints are also gated by IsPlatformAdmin
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from authentication.permissions import IsPlatformAdmin
from core.exceptions import PermissionDeniedError
from payments.filters import PaymentFilter
from payments.serializers import (
    ConfirmPaymentSerializer,
    CreateIntentSerializer,
    HelperEarningsSerializer,
    LedgerEntrySerializer,
    PaymentSerializer,
    SettlementSerializer,
    VerifyTransferSerializer,
    WithdrawalSerializer,
)
from payments.services import EscrowService, PaymentService, SettlementService

TAGS = ["Payments"]


@extend_schema_view(
    list=extend_schema(operation_id="list_payments", summary="List payments", tags=TAGS),
    retrieve=extend_schema(operation_id="get_payment", summary="Get payment", tags=TAGS),
)
class PaymentViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    permission_classes = [IsAuthenticated]
    serializer_class = PaymentSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = PaymentFilter

    def get_queryset(self):
        if not self.request.user.is_authenticated:
            return PaymentService.visible_to(self.request.user).none()
        return PaymentService.visible_to(self.request.user)

    def get_permissions(self):
        if self.action in ("release", "refund", "summary", "withdrawals"):
            return [IsAuthenticated(), IsPlatformAdmin()]
        return super().get_permissions()

    def _respond(self, payment, status_code=status.HTTP_200_OK):
        return Response(
            PaymentSerializer(payment, context=self.get_serializer_context()).data,
            status=status_code,
        )

    def _input(self, serializer_class) -> dict:
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    # =========================================================================
    # Capture
    # =========================================================================

    @extend_schema(
        summary="Create payment intent",
        description="Idempotent per request: a retry with the same amount and gateway returns the same payment.",
        tags=TAGS,
        request=CreateIntentSerializer,
        responses={201: PaymentSerializer},
    )
    @action(detail=False, methods=["post"])
    def intent(self, request):
        data = self._input(CreateIntentSerializer)
        payment = PaymentService.create_intent(
            data["request_id"],
            request.user,
            amount=data["amount"],
            gateway=data["gateway"],
        )
        return self._respond(payment, status.HTTP_201_CREATED)

    @extend_schema(summary="Confirm payment", tags=TAGS, request=ConfirmPaymentSerializer, responses={200: PaymentSerializer})
    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        data = self._input(ConfirmPaymentSerializer)
        return self._respond(PaymentService.confirm(pk, request.user, data["proof"]))

    @extend_schema(summary="Verify manual transfer", tags=TAGS, request=VerifyTransferSerializer, responses={200: PaymentSerializer})
    @action(detail=False, methods=["post"])
    def verify(self, request):
        data = self._input(VerifyTransferSerializer)
        payment = PaymentService.verify(
            data["request_id"],
            request.user,
            transaction_ref=data["transaction_ref"],
            transaction_id=data["transaction_id"],
        )
        return self._respond(payment)

    # =========================================================================
    # Settlement (admin)
    # =========================================================================

    @extend_schema(summary="Release escrow to helper", tags=TAGS, request=SettlementSerializer, responses={200: PaymentSerializer})
    @action(detail=False, methods=["post"])
    def release(self, request):
        data = self._input(SettlementSerializer)
        payment = EscrowService.release(
            data["request_id"],
            request.user,
            admin_override=data["admin_override"],
            resolve_dispute=data["resolve_dispute"],
            notes=data["notes"],
            expected_version=data.get("expected_version"),
        )
        return self._respond(payment)

    @extend_schema(summary="Refund escrow to requester", tags=TAGS, request=SettlementSerializer, responses={200: PaymentSerializer})
    @action(detail=False, methods=["post"])
    def refund(self, request):
        data = self._input(SettlementSerializer)
        payment = EscrowService.refund(
            data["request_id"],
            request.user,
            resolve_dispute=data["resolve_dispute"],
            admin_override=data["admin_override"],
            notes=data["notes"],
            expected_version=data.get("expected_version"),
        )
        return self._respond(payment)

    @extend_schema(summary="Record helper withdrawal", tags=TAGS, request=WithdrawalSerializer, responses={201: LedgerEntrySerializer})
    @action(detail=False, methods=["post"])
    def withdrawals(self, request):
        data = self._input(WithdrawalSerializer)
        entry = SettlementService.record_withdrawal(
            data["helper"],
            data["amount"],
            request.user,
            reference=data["reference"],
        )
        return Response(LedgerEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    # =========================================================================
    # Dashboards
    # =========================================================================

    @extend_schema(
        summary="Earnings or spend",
        description="Helpers get earnings (pending/released/withdrawn/withdrawable); requesters get spend.",
        tags=TAGS,
        responses={200: HelperEarningsSerializer},
    )
    @action(detail=False, methods=["get"])
    def earnings(self, request):
        user = request.user
        if user.is_helper:
            return Response(SettlementService.helper_earnings(user).to_dict())
        if user.is_requester:
            return Response(SettlementService.requester_spend(user).to_dict())
        raise PermissionDeniedError("Administrators use the payments summary")

    @extend_schema(summary="Platform payment summary", tags=TAGS, responses={200: dict})
    @action(detail=False, methods=["get"])
    def summary(self, request):
        return Response(SettlementService.admin_summary())

    @extend_schema(summary="Public gateway configuration", tags=TAGS, responses={200: dict})
    @action(detail=False, methods=["get"], url_path="gateway-config")
    def gateway_config(self, request):
        return Response(PaymentService.gateway_config())
