"""
Serializers for service request API.

Serializer Hierarchy:
    ServiceRequestSerializer: Read shape, with available_actions for the caller
    ServiceRequestCreateSerializer: Create input (requester)
    ActionSerializer: Optional expected_version + notes for lifecycle actions
    DisputeSerializer / RateSerializer / ReassignSerializer: Action inputs
    DisputeFlagSerializer / RequestTransitionSerializer: Nested read shapes

Design Decisions:
    - workflow_state, helper and timestamps are never writable; they only
      change through lifecycle actions
    - Serializers validate shape; business rules live in the service layer
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from authentication.serializers import ParticipantSerializer
from service_requests.models import DisputeFlag, RequestTransition, ServiceRequest
from service_requests.states import UrgencyLevel

User = get_user_model()


class DisputeFlagSerializer(serializers.ModelSerializer):
    raised_by = ParticipantSerializer(read_only=True)
    raised_at = serializers.DateTimeField(read_only=True)

    class Meta:
        model = DisputeFlag
        fields = [
            "id",
            "raised_by",
            "raised_by_role",
            "reason",
            "state_at_raise",
            "raised_at",
            "resolved",
            "resolved_at",
            "resolution",
        ]
        read_only_fields = fields


class RequestTransitionSerializer(serializers.ModelSerializer):
    actor = ParticipantSerializer(read_only=True)

    class Meta:
        model = RequestTransition
        fields = ["id", "action", "from_state", "to_state", "actor", "actor_role", "notes", "created_at"]
        read_only_fields = fields


class ServiceRequestSerializer(serializers.ModelSerializer):
    """
    Full request representation.

    available_actions lists what the authenticated caller may do next,
    so clients never branch on role themselves.
    """

    requester = ParticipantSerializer(read_only=True)
    helper = ParticipantSerializer(read_only=True)
    preferred_helper = ParticipantSerializer(read_only=True)
    open_dispute = serializers.SerializerMethodField()
    available_actions = serializers.SerializerMethodField()

    class Meta:
        model = ServiceRequest
        fields = [
            "id",
            "requester",
            "helper",
            "preferred_helper",
            "service_category",
            "description",
            "contact",
            "service_location",
            "scheduled_date",
            "scheduled_time",
            "urgency_level",
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
            "rating",
            "feedback",
            "open_dispute",
            "available_actions",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_open_dispute(self, obj) -> dict | None:
        dispute = obj.open_dispute
        return DisputeFlagSerializer(dispute).data if dispute else None

    def get_available_actions(self, obj) -> list[str]:
        from service_requests.services import RequestLifecycleService

        request = self.context.get("request")
        if request is None or not request.user.is_authenticated:
            return []
        return RequestLifecycleService.available_actions(obj, request.user)


class ServiceRequestCreateSerializer(serializers.Serializer):
    service_category = serializers.CharField(max_length=100)
    service_location = serializers.CharField(max_length=255)
    scheduled_date = serializers.DateField()
    scheduled_time = serializers.TimeField(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    contact = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    urgency_level = serializers.ChoiceField(
        choices=UrgencyLevel.choices,
        default=UrgencyLevel.MEDIUM,
    )
    preferred_helper_id = serializers.PrimaryKeyRelatedField(
        source="preferred_helper",
        queryset=User.objects.filter(role=User.Role.HELPER, is_active=True),
        required=False,
        allow_null=True,
    )


class ActionSerializer(serializers.Serializer):
    """Common input for lifecycle actions."""

    expected_version = serializers.IntegerField(required=False, min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DisputeSerializer(ActionSerializer):
    reason = serializers.CharField()


class RateSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    feedback = serializers.CharField(required=False, allow_blank=True, default="")


class ReassignSerializer(ActionSerializer):
    helper_id = serializers.PrimaryKeyRelatedField(
        source="helper",
        queryset=User.objects.filter(role=User.Role.HELPER, is_active=True),
    )


class RequestStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    active = serializers.IntegerField()
    completed = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    declined = serializers.IntegerField()
    disputed = serializers.IntegerField()
    open = serializers.IntegerField(required=False)
