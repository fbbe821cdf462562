"""
Test configuration and fixtures for authentication tests.

Role users and API clients (requester, helper, admin, api_client,
client_for) come from the project conftest.

Usage:
    def test_example(requester, client_for):
        response = client_for(requester).get("/api/v1/auth/me/")
        assert response.status_code == 200
"""

import pytest


@pytest.fixture
def registration_data():
    """Valid registration payload for a new helper."""
    return {
        "email": "NewHelper@Example.com",
        "full_name": "New Helper",
        "phone_number": "+91 98765 43210",
        "role": "helper",
        "password1": "StrongPass123!",
        "password2": "StrongPass123!",
    }
