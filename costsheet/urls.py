# costsheet/urls.py
from django.urls import path

from .views import SchedulePreviewAPIView

urlpatterns = [
    path("schedule/preview/", SchedulePreviewAPIView.as_view(), name="schedule-preview"),
]
