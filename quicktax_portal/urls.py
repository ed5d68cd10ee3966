"""
URL configuration for the quicktax_portal project.
"""

from django.contrib import admin
from django.urls import include, path

from apps.otp_auth.interfaces.api.urls import function_urlpatterns

from . import error_views

handler404 = "quicktax_portal.error_views.handle_404"
handler500 = "quicktax_portal.error_views.handle_500"

urlpatterns = [
    path("healthz", error_views.healthz, name="healthz"),
    path("admin/", admin.site.urls),
    path("api/", include("quicktax_portal.api_urls")),
    path("functions/v1/", include(function_urlpatterns)),
]
