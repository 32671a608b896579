"""Routes for availability lookups and the bookings resource."""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import AvailabilityCheckView, AvailabilitySearchView, BookingViewSet

app_name = "bookings"

router = DefaultRouter()
router.register("bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("availability/check", AvailabilityCheckView.as_view(), name="availability-check"),
    path("availability/search", AvailabilitySearchView.as_view(), name="availability-search"),
    path("", include(router.urls)),
]
