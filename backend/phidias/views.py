from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from academic.services import NoActiveSchoolYear, get_active_school_year
from students.models import Student
from users.permissions import CanTriggerSync, IsAdmin, IsAdminOrReadOnly, level_scope

from .client import PhidiasClient
from .models import SeguimientoConfig, SyncRun
from .serializers import (
    ConnectionTestSerializer,
    SeguimientoConfigSerializer,
    SyncRunSerializer,
    SyncTriggerSerializer,
)
from .status import history, last_run, run_summary, status_overview
from .tasks import run_phidias_sync

logger = logging.getLogger(__name__)


def _running_sync_exists(school_year) -> bool:
    """Hay una ejecución en curso que aún no superó el timeout del lock."""
    window = timedelta(seconds=int(getattr(settings, "PHIDIAS_SYNC_LOCK_TIMEOUT_SECONDS", 3600)))
    return SyncRun.objects.filter(
        school_year=school_year,
        status=SyncRun.Status.RUNNING,
        started_at__gte=timezone.now() - window,
    ).exists()


class SyncRunViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = SyncRun.objects.select_related("school_year").all()
    serializer_class = SyncRunSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ["status", "sync_type", "school_year"]

    def get_permissions(self):
        if getattr(self, "action", None) == "trigger":
            return [CanTriggerSync()]
        return super().get_permissions()

    @action(detail=False, methods=["get"], url_path="history")
    def run_history(self, request):
        try:
            limit = int(request.query_params.get("limit") or 10)
        except ValueError:
            return Response({"detail": "limit debe ser un número entero."}, status=status.HTTP_400_BAD_REQUEST)
        runs = history(min(max(limit, 1), 100))
        return Response(self.get_serializer(runs, many=True).data)

    @action(detail=False, methods=["get"])
    def last(self, request):
        run = last_run()
        if run is None:
            return Response({"detail": "No hay sincronizaciones registradas."}, status=status.HTTP_404_NOT_FOUND)
        return Response(self.get_serializer(run).data)

    @action(detail=False, methods=["get"], url_path="status")
    def sync_status(self, request):
        try:
            overview = status_overview()
        except NoActiveSchoolYear as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(overview)

    @action(detail=False, methods=["post"])
    def trigger(self, request):
        serializer = SyncTriggerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        level = serializer.validated_data.get("level")
        student_id = serializer.validated_data.get("student_id")

        scoped_level = level_scope(request.user)
        if scoped_level:
            if level and level != scoped_level:
                return Response({"detail": "No tienes acceso a ese nivel."}, status=status.HTTP_403_FORBIDDEN)
            if student_id is not None:
                student = Student.objects.filter(id=student_id).first()
                if student is not None and student.level != scoped_level:
                    return Response({"detail": "No tienes acceso a ese estudiante."}, status=status.HTTP_403_FORBIDDEN)
            elif not level:
                level = scoped_level

        try:
            school_year = get_active_school_year()
        except NoActiveSchoolYear as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        if _running_sync_exists(school_year):
            return Response(
                {"detail": "Ya hay una sincronización en curso. Intenta de nuevo cuando termine."},
                status=status.HTTP_409_CONFLICT,
            )

        run = SyncRun.objects.create(
            sync_type=SyncRun.SyncType.MANUAL,
            school_year=school_year,
            triggered_by=request.user.get_username(),
            options={"level": level, "student_id": student_id},
        )

        try:
            run_phidias_sync.delay(run_id=run.id)
        except Exception as exc:
            logger.exception("phidias_sync.dispatch_failed", extra={"run_id": run.id})
            run.refresh_from_db()
            if not run.is_finished:
                run.mark_error(f"No se pudo encolar la sincronización: {exc}")
            return Response(
                {"detail": "No se pudo encolar la sincronización.", "run": SyncRunSerializer(run).data},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        logger.info("phidias_sync.dispatched", extra={"run_id": run.id, "user_id": request.user.id})
        run.refresh_from_db()
        return Response(
            {"message": "Sincronización iniciada.", "run_id": run.id, "run": SyncRunSerializer(run).data},
            status=status.HTTP_202_ACCEPTED,
        )


class SeguimientoConfigViewSet(viewsets.ModelViewSet):
    queryset = SeguimientoConfig.objects.select_related("school_year").all()
    serializer_class = SeguimientoConfigSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["school_year", "academic_level", "infraction_type", "is_active"]


class ConnectionTestView(APIView):
    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = ConnectionTestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        client = PhidiasClient.from_settings(max_retries=0)
        result = client.test_connection(
            poll_id=serializer.validated_data.get("poll_id"),
            person_id=serializer.validated_data.get("person_id"),
        )
        if not result.success:
            logger.warning("phidias_client.connection_test_failed", extra={"error": result.error})
            return Response(
                {"success": False, "detail": result.error, "rate_limited": result.rate_limited},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(
            {
                "success": True,
                "poll": result.data.name,
                "year": result.data.year_name,
                "records": len(result.data.records),
                "last_run": run_summary(last_run()),
            }
        )
