from __future__ import annotations

import logging

from celery import shared_task

from .client import PhidiasClient
from .models import SyncRun
from .progress import SyncProgress
from .sync import PhidiasSyncService

logger = logging.getLogger(__name__)


def _progress_recorder(run: SyncRun):
    def record(event: SyncProgress) -> None:
        run.set_progress(event.as_dict())

    return record


@shared_task(bind=True)
def run_phidias_sync(
    self,
    run_id: int | None = None,
    *,
    sync_type: str = SyncRun.SyncType.AUTOMATIC,
    triggered_by: str = "",
    level: str | None = None,
    student_id: int | None = None,
) -> dict:
    """Ejecuta una sincronización con Phidias.

    Con ``run_id`` retoma la ejecución creada por la API (estado running) y
    usa sus filtros; sin él crea una ejecución nueva (cron).
    """

    if run_id is not None:
        run = SyncRun.objects.filter(id=run_id).first()
        if run is None:
            logger.warning("phidias_sync.run_missing", extra={"run_id": run_id, "task_id": self.request.id})
            return {"run_id": run_id, "status": "missing"}
        if run.is_finished:
            logger.info("phidias_sync.skip", extra={"run_id": run.id, "status": run.status})
            return {"run_id": run.id, "status": run.status}
    else:
        run = SyncRun.objects.create(
            sync_type=sync_type,
            triggered_by=triggered_by or "",
            options={"level": level, "student_id": student_id},
        )

    options = run.options or {}
    service = PhidiasSyncService(PhidiasClient.from_settings())
    result = service.run(
        run=run,
        level=options.get("level"),
        student_id=options.get("student_id"),
        on_progress=_progress_recorder(run),
    )

    return {
        "run_id": result.run_id,
        "status": result.status,
        "students_processed": result.students_processed,
        "records_created": result.records_created,
        "records_updated": result.records_updated,
        "errors": len(result.errors),
    }
