# channel/urls.py
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_nested import routers

from .views import ChannelPartnerLeadViewSet, ChannelPartnerViewSet

router = DefaultRouter()
router.register(r"channel-partners", ChannelPartnerViewSet, basename="channel-partner")

partners_router = routers.NestedDefaultRouter(router, r"channel-partners", lookup="partner")
partners_router.register(r"leads", ChannelPartnerLeadViewSet, basename="partner-lead")

urlpatterns = [
    path("", include(router.urls)),
    path("", include(partners_router.urls)),
]
