from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/accounts/", include("accounts.urls")),
    path("api/", include("clientsetup.urls")),
    path("api/costsheet/", include("costsheet.urls")),
    path("api/", include("salelead.urls")),
    path("api/", include("channel.urls")),
    path("api/", include("booking.urls")),
    path("api/dashboard/", include("dashboard.urls")),
]
