# dashboard/urls.py

from django.urls import path
from .views import (
    DashboardMetricsView,
    DashboardPartnersView,
    DashboardPaymentsView,
    DashboardProjectsView,
    DashboardTrendView,
)

urlpatterns = [
    path("metrics/", DashboardMetricsView.as_view(), name="dashboard-metrics"),
    path("projects/", DashboardProjectsView.as_view(), name="dashboard-projects"),
    path("payments/", DashboardPaymentsView.as_view(), name="dashboard-payments"),
    path("partners/", DashboardPartnersView.as_view(), name="dashboard-partners"),
    path("trend/", DashboardTrendView.as_view(), name="dashboard-trend"),
]
