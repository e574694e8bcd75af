from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta

from django.conf import settings
from django.db.models import Count, Max
from django.utils import timezone

from academic.levels import level_for_student
from academic.services import get_active_school_year
from discipline.models import Infraction
from students.models import Student

from .configs import get_active_configs
from .models import SyncRun

_COMPLETED_STATUSES = (SyncRun.Status.SUCCESS, SyncRun.Status.PARTIAL)


def history(limit: int = 10) -> list[SyncRun]:
    return list(SyncRun.objects.select_related("school_year").order_by("-started_at", "-id")[: max(0, int(limit))])


def last_run() -> SyncRun | None:
    return SyncRun.objects.order_by("-started_at", "-id").first()


def _last_completed_for_level(runs: list[SyncRun], level: str) -> SyncRun | None:
    # Solo cuentan ejecuciones que cubrieron el nivel completo
    for run in runs:
        options = run.options or {}
        if options.get("student_id"):
            continue
        if options.get("level") in (None, "", level):
            return run
    return None


def run_summary(run: SyncRun | None) -> dict | None:
    if run is None:
        return None
    return {
        "id": run.id,
        "sync_type": run.sync_type,
        "status": run.status,
        "students_processed": run.students_processed,
        "records_created": run.records_created,
        "records_updated": run.records_updated,
        "errors": len(run.errors or []),
        "triggered_by": run.triggered_by,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "duration_seconds": run.duration_seconds,
    }


def status_overview(*, school_year=None, now: datetime | None = None) -> dict:
    """Estado de sincronización por configuración activa.

    Una sección necesita sincronizarse si nunca se completó una ejecución
    para su nivel o si la última terminó hace más de PHIDIAS_STALE_AFTER_HOURS.
    Lanza NoActiveSchoolYear si no hay año activo.
    """

    if school_year is None:
        school_year = get_active_school_year()
    now = now or timezone.now()
    stale_after = timedelta(hours=float(getattr(settings, "PHIDIAS_STALE_AFTER_HOURS", 24)))

    completed_runs = list(
        SyncRun.objects.filter(school_year=school_year, status__in=_COMPLETED_STATUSES)
        .exclude(completed_at__isnull=True)
        .order_by("-completed_at", "-id")[:50]
    )

    students_by_level = Counter(
        level_for_student(grade, section)
        for grade, section in Student.objects.filter(school_year=school_year, is_active=True).values_list(
            "grade", "section"
        )
    )

    sections = []
    for config in get_active_configs(school_year=school_year):
        stats = Infraction.objects.filter(
            school_year=school_year,
            infraction_type=config.infraction_type,
            level=config.academic_level,
            source=Infraction.Source.PHIDIAS,
        ).aggregate(total=Count("id"), last_edit=Max("external_edited_at"))

        last_completed = _last_completed_for_level(completed_runs, config.academic_level)
        last_synced_at = last_completed.completed_at if last_completed else None

        sections.append(
            {
                "config_id": config.id,
                "poll_id": config.poll_id,
                "name": config.name,
                "infraction_type": config.infraction_type,
                "academic_level": config.academic_level,
                "students": students_by_level.get(config.academic_level, 0),
                "infractions": stats["total"] or 0,
                "last_external_edit": stats["last_edit"],
                "last_synced_at": last_synced_at,
                "needs_sync": last_synced_at is None or now - last_synced_at > stale_after,
            }
        )

    return {
        "school_year": {"id": school_year.id, "name": school_year.name},
        "last_run": run_summary(last_run()),
        "last_successful_run": run_summary(completed_runs[0] if completed_runs else None),
        "needs_sync": any(section["needs_sync"] for section in sections),
        "sections": sections,
    }
