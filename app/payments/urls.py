"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
Webhook routes are declared before the router so they never match a
payment detail route.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from payments.views import PaymentViewSet
from payments.webhooks.views import regional_webhook, stripe_webhook

app_name = "payments"

router = SimpleRouter()
router.register("", PaymentViewSet, basename="payment")

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    path("webhooks/regional/", regional_webhook, name="regional_webhook"),
    path("", include(router.urls)),
]
