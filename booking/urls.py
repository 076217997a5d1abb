# booking/urls.py
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import BookingViewSet, NegotiationViewSet, PaymentViewSet

router = DefaultRouter()
router.register(r"negotiations", NegotiationViewSet, basename="negotiation")
router.register(r"bookings", BookingViewSet, basename="booking")
router.register(r"payments", PaymentViewSet, basename="payment")

urlpatterns = [
    path("", include(router.urls)),
]
