"""
Views for notification API.

Endpoints:
    GET  /api/v1/notifications/               - List own notifications (?is_read=, ?event=)
    GET  /api/v1/notifications/{id}/          - Notification detail
    GET  /api/v1/notifications/unread-count/  - Unread count
    POST /api/v1/notifications/{id}/read/     - Mark one as read
    POST /api/v1/notifications/read-all/      - Mark all as read

Users only ever see notifications addressed to them; another user's id
is a 404.
"""

from __future__ import annotations

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from notifications.models import Notification
from notifications.serializers import (
    MarkAllReadResponseSerializer,
    NotificationSerializer,
    UnreadCountSerializer,
)
from notifications.services import NotificationService

TAGS = ["Notifications"]


@extend_schema_view(
    list=extend_schema(
        operation_id="list_notifications",
        summary="List notifications",
        parameters=[
            OpenApiParameter(
                name="is_read",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Filter by read status (true/false)",
                required=False,
            ),
            OpenApiParameter(
                name="event",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by event name, e.g. payment.released",
                required=False,
            ),
        ],
        tags=TAGS,
    ),
    retrieve=extend_schema(operation_id="get_notification", summary="Get notification", tags=TAGS),
)
class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return Notification.objects.none()
        queryset = NotificationService.for_user(user)

        is_read = self.request.query_params.get("is_read")
        if is_read is not None:
            queryset = queryset.filter(is_read=is_read.lower() == "true")

        event = self.request.query_params.get("event")
        if event:
            queryset = queryset.filter(event=event)
        return queryset

    @extend_schema(
        operation_id="get_unread_notification_count",
        summary="Get unread notification count",
        responses={200: UnreadCountSerializer},
        tags=TAGS,
    )
    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        count = NotificationService.unread_count(request.user)
        return Response(UnreadCountSerializer({"unread_count": count}).data)

    @extend_schema(
        operation_id="mark_notification_read",
        summary="Mark notification as read",
        description="Idempotent: an already-read notification returns success.",
        request=None,
        responses={
            200: NotificationSerializer,
            404: OpenApiResponse(description="Notification not found"),
        },
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        notification = NotificationService.mark_as_read(pk, request.user)
        return Response(self.get_serializer(notification).data)

    @extend_schema(
        operation_id="mark_all_notifications_read",
        summary="Mark all notifications as read",
        request=None,
        responses={200: MarkAllReadResponseSerializer},
        tags=TAGS,
    )
    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request):
        count = NotificationService.mark_all_as_read(request.user)
        return Response(MarkAllReadResponseSerializer({"marked_count": count}).data)
