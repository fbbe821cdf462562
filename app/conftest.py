"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures:
one user per actor role and JWT-authenticated API clients. App-specific
fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full request-to-settlement journeys)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_policies.py, test_gateways.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_handlers.py",
        "test_escrow_service.py",
        "test_payment_service.py",
        "test_settlement_service.py",
        "test_reconciliation_service.py",
        "test_ledger.py",
        "test_locks.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_managers.py",
        "test_policies.py",
        "test_states.py",
        "test_gateways.py",
        "test_catalog.py",
        "test_circuit_breaker.py",
        "test_exceptions.py",
        "test_events.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Role Fixtures
# =============================================================================


@pytest.fixture
def requester(db):
    from authentication.tests.factories import RequesterFactory

    return RequesterFactory()


@pytest.fixture
def helper(db):
    from authentication.tests.factories import HelperFactory

    return HelperFactory()


@pytest.fixture
def other_helper(db):
    from authentication.tests.factories import HelperFactory

    return HelperFactory()


@pytest.fixture
def platform_admin(db):
    from authentication.tests.factories import AdminFactory

    return AdminFactory()


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def client_for():
    """
    Build an APIClient authenticated as ``user`` with a simplejwt bearer token.

    Usage:
        response = client_for(helper).post(url)
    """
    from rest_framework.test import APIClient
    from rest_framework_simplejwt.tokens import RefreshToken

    def _client(user):
        client = APIClient()
        token = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.access_token}")
        return client

    return _client


@pytest.fixture(autouse=True)
def redis_conn(mocker):
    """
    Replace the Redis connection used by core.locks with a mock.

    Locks always acquire by default; contention tests request this fixture
    and set ``redis_conn.set.return_value = False``.
    """
    conn = mocker.MagicMock()
    conn.set.return_value = True
    conn.eval.return_value = 1
    mocker.patch("core.locks.get_redis_connection", return_value=conn)
    return conn
