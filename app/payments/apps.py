"""
Payments app configuration.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Escrow payments, ledger and provider integrations."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
