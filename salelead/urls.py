from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import CommunicationViewSet, LeadViewSet

router = DefaultRouter()
router.register(r"leads", LeadViewSet, basename="lead")
router.register(r"communications", CommunicationViewSet, basename="communication")

urlpatterns = [
    path("", include(router.urls)),
]
