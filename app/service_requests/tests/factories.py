"""
Factory Boy factories for service request models.

Traits put a request straight into a workflow state with the timestamps
and helper that state implies. The FSM field is only set through the
constructor, which django-fsm allows for protected fields.

Usage:
    from service_requests.tests.factories import ServiceRequestFactory

    open_request = ServiceRequestFactory(requester=requester)
    in_progress = ServiceRequestFactory(in_progress=True, helper=helper)
    dispute = DisputeFlagFactory(request=in_progress)
"""

from datetime import timedelta

import factory
from django.utils import timezone

from authentication.tests.factories import HelperFactory, RequesterFactory
from service_requests.models import DisputeFlag, ServiceRequest
from service_requests.states import RequestState, UrgencyLevel


class ServiceRequestFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ServiceRequest
        skip_postgeneration_save = True

    requester = factory.SubFactory(RequesterFactory)
    service_category = "elder_care"
    description = factory.Faker("sentence")
    contact = "+91 98450 00000"
    service_location = "Koramangala, Bengaluru"
    scheduled_date = factory.LazyFunction(lambda: timezone.localdate() + timedelta(days=3))
    urgency_level = UrgencyLevel.MEDIUM

    class Params:
        accepted = factory.Trait(
            workflow_state=RequestState.ACCEPTED,
            helper=factory.SubFactory(HelperFactory),
            accepted_at=factory.LazyFunction(timezone.now),
        )
        in_progress = factory.Trait(
            workflow_state=RequestState.IN_PROGRESS,
            helper=factory.SubFactory(HelperFactory),
            accepted_at=factory.LazyFunction(timezone.now),
            started_at=factory.LazyFunction(timezone.now),
        )
        completed = factory.Trait(
            workflow_state=RequestState.COMPLETED_BY_HELPER,
            helper=factory.SubFactory(HelperFactory),
            accepted_at=factory.LazyFunction(timezone.now),
            started_at=factory.LazyFunction(timezone.now),
            completed_at=factory.LazyFunction(timezone.now),
        )
        confirmed = factory.Trait(
            workflow_state=RequestState.CONFIRMED_BY_REQUESTER,
            helper=factory.SubFactory(HelperFactory),
            accepted_at=factory.LazyFunction(timezone.now),
            started_at=factory.LazyFunction(timezone.now),
            completed_at=factory.LazyFunction(timezone.now),
            confirmed_at=factory.LazyFunction(timezone.now),
        )
        declined = factory.Trait(
            workflow_state=RequestState.DECLINED,
            declined_at=factory.LazyFunction(timezone.now),
        )
        cancelled = factory.Trait(
            workflow_state=RequestState.CANCELLED,
            cancelled_at=factory.LazyFunction(timezone.now),
        )
        window_closed = factory.Trait(
            cancel_deadline=factory.LazyFunction(lambda: timezone.now() - timedelta(minutes=1)),
        )


class DisputeFlagFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = DisputeFlag
        skip_postgeneration_save = True

    request = factory.SubFactory(ServiceRequestFactory, in_progress=True)
    raised_by = factory.SelfAttribute("request.requester")
    raised_by_role = "requester"
    reason = "Helper did not show up"
    state_at_raise = factory.SelfAttribute("request.workflow_state")
