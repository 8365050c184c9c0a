"""
URL configuration for the udhaar billing platform.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("apps.core.urls")),
    path("api/", include("apps.inventory.urls")),
    path("api/", include("apps.crm.urls")),
    path("api/", include("apps.sales.urls")),
    path("api/reports/", include("apps.reporting.urls")),
]
