import django_filters as filters

from service_requests.models import ServiceRequest
from service_requests.states import RequestState


class ServiceRequestFilter(filters.FilterSet):
    state = filters.ChoiceFilter(field_name="workflow_state", choices=RequestState.choices)
    archived = filters.BooleanFilter(method="filter_archived")
    scheduled_from = filters.DateFilter(field_name="scheduled_date", lookup_expr="gte")
    scheduled_to = filters.DateFilter(field_name="scheduled_date", lookup_expr="lte")

    class Meta:
        model = ServiceRequest
        fields = ["state", "archived", "service_category", "urgency_level", "scheduled_from", "scheduled_to"]

    def filter_archived(self, queryset, name, value):
        return queryset.filter(archived_at__isnull=not value)
