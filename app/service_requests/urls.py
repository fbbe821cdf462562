"""
URL configuration for service request API.

All URLs are prefixed with /api/v1/requests/ in the main URL configuration.
SimpleRouter (no API root view) so the empty prefix serves the list route.
"""

from rest_framework.routers import SimpleRouter

from service_requests.views import ServiceRequestViewSet

router = SimpleRouter()
router.register(r"", ServiceRequestViewSet, basename="request")

app_name = "service_requests"

urlpatterns = router.urls
