"""Sincronización de faltas desde las encuestas de Phidias.

Una ejecución recorre las fases loading_config -> loading_students ->
syncing -> completed | error y deja exactamente un ``SyncRun`` finalizado.
Los errores de un estudiante o de un registro se acumulan en la ejecución
sin detenerla; solo la falta de año activo, de configuraciones o del
estudiante pedido terminan la ejecución con estado ``error``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from django.utils import timezone

from academic.levels import level_for_student
from academic.services import NoActiveSchoolYear, get_active_school_year
from students.models import Student

from .client import PhidiasClient, StudentRef
from .configs import get_active_configs
from .locks import SyncAlreadyRunning, sync_lock
from .mapping import map_to_infraction
from .models import SeguimientoConfig, SyncRun
from .progress import CurrentStudent, ProgressCallback, SyncPhase, SyncProgress, emit
from .reconciliation import reconcile

logger = logging.getLogger(__name__)


class SyncConfigurationError(Exception):
    """Condición que impide sincronizar (sin configuraciones, estudiante inexistente)."""


@dataclass
class _RunStats:
    students_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    errors: list[dict] = field(default_factory=list)

    def add_error(self, student_id: int, poll_id: int, message: str) -> None:
        self.errors.append({"student_id": student_id, "poll_id": poll_id, "error": message})

    def counts(self) -> dict[str, int]:
        return {
            "students_processed": self.students_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
        }


@dataclass(frozen=True)
class SyncResult:
    run_id: int
    status: str
    students_processed: int
    records_created: int
    records_updated: int
    errors: list[dict]
    duration_seconds: float | None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status in (SyncRun.Status.SUCCESS, SyncRun.Status.PARTIAL)

    @classmethod
    def from_run(cls, run: SyncRun, message: str = "") -> "SyncResult":
        return cls(
            run_id=run.id,
            status=run.status,
            students_processed=run.students_processed,
            records_created=run.records_created,
            records_updated=run.records_updated,
            errors=list(run.errors),
            duration_seconds=run.duration_seconds,
            message=message,
        )


class PhidiasSyncService:
    def __init__(
        self,
        client: PhidiasClient,
        *,
        mapper: Callable = map_to_infraction,
        reconciler: Callable = reconcile,
    ):
        self.client = client
        self.mapper = mapper
        self.reconciler = reconciler

    def sync_level(self, level: str, **kwargs) -> SyncResult:
        return self.run(level=level, **kwargs)

    def sync_student(self, student_id: int, **kwargs) -> SyncResult:
        return self.run(student_id=student_id, **kwargs)

    def run(
        self,
        *,
        sync_type: str = SyncRun.SyncType.MANUAL,
        triggered_by: str = "",
        level: str | None = None,
        student_id: int | None = None,
        on_progress: ProgressCallback | None = None,
        run: SyncRun | None = None,
    ) -> SyncResult:
        started = time.monotonic()
        if run is None:
            run = SyncRun.objects.create(
                sync_type=sync_type,
                triggered_by=triggered_by or "",
                options={"level": level, "student_id": student_id},
            )
        else:
            # La duración se mide desde que la ejecución arranca, no desde que se encoló
            run.started_at = timezone.now()
            run.save(update_fields=["started_at"])
        stats = _RunStats()
        logger.info(
            "phidias_sync.started",
            extra={"run_id": run.id, "sync_type": run.sync_type, "level": level, "student_id": student_id},
        )

        try:
            emit(on_progress, SyncProgress(SyncPhase.LOADING_CONFIG, 0, 0, "Cargando configuraciones de seguimientos..."))
            client_errors = self.client.validate_configuration()
            if client_errors:
                raise SyncConfigurationError("; ".join(client_errors))

            school_year = get_active_school_year()
            if run.school_year_id != school_year.id:
                run.school_year = school_year
                run.save(update_fields=["school_year"])

            configs = get_active_configs(level=level, school_year=school_year)
            if not configs:
                suffix = f" para el nivel {level}" if level else ""
                raise SyncConfigurationError(f"No se encontraron configuraciones de seguimientos activas{suffix}")

            emit(
                on_progress,
                SyncProgress(SyncPhase.LOADING_STUDENTS, 0, 0, "Cargando estudiantes del año académico activo..."),
            )
            students = self._load_students(school_year, student_id)

            with sync_lock(school_year.id):
                emit(
                    on_progress,
                    SyncProgress(SyncPhase.SYNCING, 0, len(configs), "Iniciando sincronización con Phidias..."),
                )
                for index, config in enumerate(configs):
                    try:
                        self._sync_config(config, students, school_year.id, index, len(configs), stats, on_progress)
                    except Exception as exc:
                        logger.exception(
                            "phidias_sync.config_failed",
                            extra={"run_id": run.id, "poll_id": config.poll_id},
                        )
                        stats.add_error(0, config.poll_id, f"Error procesando {config.name}: {exc}")
                    emit(
                        on_progress,
                        SyncProgress(
                            SyncPhase.SYNCING,
                            processed=index + 1,
                            total=len(configs),
                            message=f"Completado: {config.name}",
                            current_level=config.academic_level,
                        ),
                    )

        except (NoActiveSchoolYear, SyncConfigurationError, SyncAlreadyRunning) as exc:
            message = str(exc)
            run.mark_error(message, errors=stats.errors, **stats.counts())
            logger.warning("phidias_sync.aborted", extra={"run_id": run.id, "error": message})
            emit(on_progress, SyncProgress(SyncPhase.ERROR, 0, 0, message))
            return SyncResult.from_run(run, message)
        except Exception as exc:
            run.mark_error(str(exc) or exc.__class__.__name__, errors=stats.errors, **stats.counts())
            logger.exception("phidias_sync.failed", extra={"run_id": run.id})
            emit(on_progress, SyncProgress(SyncPhase.ERROR, 0, 0, str(exc)))
            raise

        status = SyncRun.Status.SUCCESS if not stats.errors else SyncRun.Status.PARTIAL
        run.mark_finished(status=status, errors=stats.errors, **stats.counts())

        message = (
            f"Sincronización completada: {stats.students_processed} consultas exitosas, "
            f"{stats.records_created} faltas creadas, {stats.records_updated} actualizadas, "
            f"{len(stats.errors)} errores."
        )
        logger.info(
            "phidias_sync.finished",
            extra={
                "run_id": run.id,
                "status": status,
                "elapsed": round(time.monotonic() - started, 3),
                "errors": len(stats.errors),
                **stats.counts(),
            },
        )
        emit(on_progress, SyncProgress(SyncPhase.COMPLETED, len(configs), len(configs), message))
        return SyncResult.from_run(run, message)

    def _load_students(self, school_year, student_id: int | None) -> list[Student]:
        queryset = Student.objects.filter(school_year=school_year)
        if student_id is not None:
            students = list(queryset.filter(id=student_id))
            if not students:
                raise SyncConfigurationError(f"No se encontró el estudiante con ID {student_id}")
            return students
        return list(queryset.filter(is_active=True))

    def _sync_config(
        self,
        config: SeguimientoConfig,
        students: list[Student],
        school_year_id: int,
        index: int,
        total_configs: int,
        stats: _RunStats,
        on_progress: ProgressCallback | None,
    ) -> None:
        level_students = [
            student
            for student in students
            if level_for_student(student.grade, student.section) == config.academic_level
        ]
        if not level_students:
            logger.info(
                "phidias_sync.config_skipped",
                extra={"poll_id": config.poll_id, "level": config.academic_level},
            )
            return

        students_by_id = {student.id: student for student in level_students}
        refs = [StudentRef(id=student.id, external_id=student.code, name=student.full_name) for student in level_students]
        batch_size = self.client.batch_size

        for start in range(0, len(refs), batch_size):
            batch = refs[start:start + batch_size]
            results = self.client.process_batch(batch, [config.poll_id])

            done = start + len(batch)
            emit(
                on_progress,
                SyncProgress(
                    SyncPhase.SYNCING,
                    processed=index + done / len(refs),
                    total=total_configs,
                    message=f"Sincronizando {config.name}: {done}/{len(refs)} estudiantes procesados",
                    current_level=config.academic_level,
                    current_student=CurrentStudent(id=batch[-1].id, name=batch[-1].name),
                ),
            )

            for item in results:
                if not item.result.success:
                    stats.add_error(item.student_id, item.poll_id, item.result.error or "Error desconocido")
                    continue

                stats.students_processed += 1
                student = students_by_id[item.student_id]
                for record in item.result.data.records:
                    try:
                        data = self.mapper(
                            record,
                            student,
                            school_year_id=school_year_id,
                            infraction_type=config.infraction_type,
                            academic_level=config.academic_level,
                        )
                        outcome = self.reconciler(data)
                    except Exception as exc:
                        logger.exception(
                            "phidias_sync.record_failed",
                            extra={"student_id": item.student_id, "poll_id": item.poll_id, "record_id": record.id},
                        )
                        stats.add_error(item.student_id, item.poll_id, f"Registro {record.id}: {exc}")
                        continue

                    stats.records_created += int(outcome.created)
                    stats.records_updated += int(outcome.updated)
