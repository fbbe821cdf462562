"""
Repository-level pytest configuration.

Settings come from .env.test (see config.settings). Here the Redis cache
is swapped for local memory so circuit-breaker state never leaks between
tests or depends on a running Redis, and passwords use the fast MD5 hasher.
"""

import pytest


def pytest_configure():
    from django.conf import settings

    settings.CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "escrow-tests",
        }
    }
    settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]


@pytest.fixture(autouse=True)
def _clear_cache():
    from django.core.cache import cache

    cache.clear()
    yield
