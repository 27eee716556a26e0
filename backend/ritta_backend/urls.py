"""
URL configuration for ritta_backend project.
"""

from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/", include("users.urls")),
    path("api/", include("students.urls")),
    path("api/", include("notifications.urls")),
    path("api/", include("audit.urls")),
    path("api/withdrawals/", include("withdrawals.urls")),
]
