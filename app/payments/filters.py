import django_filters as filters

from payments.models import Payment
from payments.state_machines import EscrowState, GatewayType


class PaymentFilter(filters.FilterSet):
    request_id = filters.UUIDFilter(field_name="request_id")
    escrow_state = filters.ChoiceFilter(choices=EscrowState.choices)
    gateway = filters.ChoiceFilter(choices=GatewayType.choices)

    class Meta:
        model = Payment
        fields = ["request_id", "escrow_state", "gateway", "trust_level"]
