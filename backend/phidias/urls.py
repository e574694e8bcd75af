from django.urls import path
from rest_framework.routers import DefaultRouter

from .views import ConnectionTestView, SeguimientoConfigViewSet, SyncRunViewSet

router = DefaultRouter()
router.register(r"phidias/sync-runs", SyncRunViewSet, basename="phidias-sync-run")
router.register(r"phidias/configs", SeguimientoConfigViewSet, basename="phidias-config")

urlpatterns = [
    path("phidias/connection-test/", ConnectionTestView.as_view(), name="phidias-connection-test"),
] + router.urls
