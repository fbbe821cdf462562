"""
ViewSets for service request API.

URL Structure:
    /api/v1/requests/                    GET, POST
    /api/v1/requests/stats/              GET
    /api/v1/requests/{id}/               GET
    /api/v1/requests/{id}/history/       GET
    /api/v1/requests/{id}/accept/        POST (helper)
    /api/v1/requests/{id}/decline/       POST (helper)
    /api/v1/requests/{id}/viewed/        POST (helper)
    /api/v1/requests/{id}/start/         POST (helper)
    /api/v1/requests/{id}/complete/      POST (helper)
    /api/v1/requests/{id}/confirm/       POST (requester)
    /api/v1/requests/{id}/cancel/        POST (requester)
    /api/v1/requests/{id}/relist/        POST (requester)
    /api/v1/requests/{id}/rate/          POST (requester)
    /api/v1/requests/{id}/dispute/       POST (requester or helper)
    /api/v1/requests/{id}/reassign/      POST (admin)
    /api/v1/requests/{id}/resolve-dispute/ POST (admin, no funds held)

Design Decisions:
    - Views only parse input and render output; every rule (role, party,
      window, dispute freeze, transition table) lives in the service layer
    - Service errors are rendered by core.exception_handler
    - Lifecycle actions accept an optional expected_version
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from service_requests.filters import ServiceRequestFilter
from service_requests.models import ServiceRequest
from service_requests.serializers import (
    ActionSerializer,
    DisputeFlagSerializer,
    DisputeSerializer,
    RateSerializer,
    ReassignSerializer,
    RequestStatsSerializer,
    RequestTransitionSerializer,
    ServiceRequestCreateSerializer,
    ServiceRequestSerializer,
)
from service_requests.services import RequestLifecycleService

TAGS = ["Requests"]


@extend_schema_view(
    list=extend_schema(
        operation_id="list_requests",
        summary="List requests",
        description="Requests visible to the caller: own (requester), assigned or open (helper), all (admin).",
        tags=TAGS,
    ),
    retrieve=extend_schema(operation_id="get_request", summary="Get request", tags=TAGS),
)
class ServiceRequestViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Service request lifecycle.

    Each POST action returns the updated request, including the caller's
    next available_actions and the new version.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ServiceRequestSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = ServiceRequestFilter

    def get_queryset(self):
        if not self.request.user.is_authenticated:
            return ServiceRequest.objects.none()

        return ServiceRequest.objects.visible_to(self.request.user).select_related(
            "requester", "helper", "preferred_helper"
        )

    def _respond(self, service_request: ServiceRequest, status_code=status.HTTP_200_OK):
        serializer = ServiceRequestSerializer(service_request, context=self.get_serializer_context())
        return Response(serializer.data, status=status_code)

    def _action_input(self, serializer_class=ActionSerializer) -> dict:
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    # =========================================================================
    # Create
    # =========================================================================

    @extend_schema(
        operation_id="create_request",
        summary="Create request",
        tags=TAGS,
        request=ServiceRequestCreateSerializer,
        responses={201: ServiceRequestSerializer},
    )
    def create(self, request):
        serializer = ServiceRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service_request = RequestLifecycleService.create(request.user, **serializer.validated_data)
        return self._respond(service_request, status.HTTP_201_CREATED)

    # =========================================================================
    # Helper actions
    # =========================================================================

    @extend_schema(summary="Accept request", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.accept(pk, request.user, expected_version=data.get("expected_version"))
        )

    @extend_schema(summary="Decline request", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def decline(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.decline(
                pk,
                request.user,
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        )

    @extend_schema(summary="Mark request viewed", tags=TAGS, request=None, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def viewed(self, request, pk=None):
        return self._respond(RequestLifecycleService.mark_viewed(pk, request.user))

    @extend_schema(summary="Start work", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.start(pk, request.user, expected_version=data.get("expected_version"))
        )

    @extend_schema(summary="Mark completed", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.complete(
                pk,
                request.user,
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        )

    # =========================================================================
    # Requester actions
    # =========================================================================

    @extend_schema(summary="Confirm completion", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.confirm(
                pk,
                request.user,
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        )

    @extend_schema(summary="Cancel request", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.cancel(
                pk,
                request.user,
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        )

    @extend_schema(summary="Relist declined request", tags=TAGS, request=ActionSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def relist(self, request, pk=None):
        data = self._action_input()
        return self._respond(
            RequestLifecycleService.relist(pk, request.user, expected_version=data.get("expected_version"))
        )

    @extend_schema(summary="Rate helper", tags=TAGS, request=RateSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def rate(self, request, pk=None):
        data = self._action_input(RateSerializer)
        return self._respond(
            RequestLifecycleService.rate(pk, request.user, data["rating"], data["feedback"])
        )

    # =========================================================================
    # Either party / admin
    # =========================================================================

    @extend_schema(summary="Raise dispute", tags=TAGS, request=DisputeSerializer, responses={201: DisputeFlagSerializer})
    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):
        data = self._action_input(DisputeSerializer)
        dispute = RequestLifecycleService.raise_dispute(
            pk,
            request.user,
            reason=data["reason"],
            expected_version=data.get("expected_version"),
        )
        return Response(DisputeFlagSerializer(dispute).data, status=status.HTTP_201_CREATED)

    @extend_schema(summary="Dismiss dispute", tags=TAGS, request=ActionSerializer, responses={200: DisputeFlagSerializer})
    @action(detail=True, methods=["post"], url_path="resolve-dispute")
    def resolve_dispute(self, request, pk=None):
        data = self._action_input()
        dispute = RequestLifecycleService.resolve_dispute(
            pk,
            request.user,
            notes=data["notes"],
            expected_version=data.get("expected_version"),
        )
        return Response(DisputeFlagSerializer(dispute).data)

    @extend_schema(summary="Reassign helper", tags=TAGS, request=ReassignSerializer, responses={200: ServiceRequestSerializer})
    @action(detail=True, methods=["post"])
    def reassign(self, request, pk=None):
        data = self._action_input(ReassignSerializer)
        return self._respond(
            RequestLifecycleService.reassign(
                pk,
                request.user,
                data["helper"],
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @extend_schema(summary="Status history", tags=TAGS, responses={200: RequestTransitionSerializer(many=True)})
    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        transitions = RequestLifecycleService.history(pk, request.user)
        return Response(RequestTransitionSerializer(transitions, many=True).data)

    @extend_schema(summary="Request totals", tags=TAGS, responses={200: RequestStatsSerializer})
    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(RequestLifecycleService.stats(request.user))
