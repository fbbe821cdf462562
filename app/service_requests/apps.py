"""
Django app configuration for service requests.
"""

from django.apps import AppConfig


class ServiceRequestsConfig(AppConfig):
    """Configuration for the service request lifecycle."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "service_requests"
    verbose_name = "Service Requests"
