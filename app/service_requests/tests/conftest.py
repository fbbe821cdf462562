"""
Pytest fixtures for service request tests.

Requests in each workflow state, owned by the root ``requester`` and
(where assigned) worked by the root ``helper``.
"""

import pytest

from service_requests.tests.factories import ServiceRequestFactory


@pytest.fixture
def open_request(requester):
    return ServiceRequestFactory(requester=requester)


@pytest.fixture
def accepted_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, accepted=True)


@pytest.fixture
def in_progress_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, in_progress=True)


@pytest.fixture
def completed_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, completed=True)


@pytest.fixture
def confirmed_request(requester, helper):
    return ServiceRequestFactory(requester=requester, helper=helper, confirmed=True)


@pytest.fixture
def declined_request(requester):
    return ServiceRequestFactory(requester=requester, declined=True)


@pytest.fixture
def emitted(mocker):
    """Captures domain events emitted by the lifecycle service."""
    return mocker.patch("service_requests.services.emit")
