"""
URL configuration for convivencia_backend project.

Tokens JWT en /api/token/; el resto son los recursos de convivencia y la
sincronización con Phidias.
"""

from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("users.urls")),
    path("api/", include("academic.urls")),
    path("api/", include("students.urls")),
    path("api/", include("discipline.urls")),
    path("api/", include("phidias.urls")),
]
