from __future__ import annotations

from django.db import models
from django.utils import timezone

from academic.levels import LEVEL_CHOICES
from discipline.models import Infraction


class SeguimientoConfig(models.Model):
    """Encuesta de Phidias que registra un tipo de falta para un nivel y año escolar."""

    poll_id = models.PositiveIntegerField(verbose_name="Id de encuesta (Phidias)")
    name = models.CharField(max_length=200, verbose_name="Nombre")
    description = models.TextField(blank=True, verbose_name="Descripción")
    infraction_type = models.CharField(
        max_length=10, choices=Infraction.Type.choices, verbose_name="Tipo de falta"
    )
    academic_level = models.CharField(max_length=20, choices=LEVEL_CHOICES, verbose_name="Nivel académico")
    school_year = models.ForeignKey(
        "academic.SchoolYear",
        on_delete=models.CASCADE,
        related_name="seguimiento_configs",
        verbose_name="Año escolar",
    )
    is_active = models.BooleanField(default=True, verbose_name="Activa")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["academic_level", "infraction_type", "poll_id"]
        verbose_name = "Configuración de seguimiento"
        verbose_name_plural = "Configuraciones de seguimiento"
        constraints = [
            models.UniqueConstraint(
                fields=["poll_id", "school_year"],
                condition=models.Q(is_active=True),
                name="phidias_unique_active_poll_per_year",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} (encuesta {self.poll_id}, {self.academic_level}, {self.infraction_type})"


class SyncRun(models.Model):
    class SyncType(models.TextChoices):
        MANUAL = "manual", "Manual"
        AUTOMATIC = "automatic", "Automática"

    class Status(models.TextChoices):
        RUNNING = "running", "En proceso"
        SUCCESS = "success", "Exitosa"
        PARTIAL = "partial", "Parcial"
        ERROR = "error", "Error"

    FINAL_STATUSES = (Status.SUCCESS, Status.PARTIAL, Status.ERROR)

    sync_type = models.CharField(max_length=16, choices=SyncType.choices, default=SyncType.MANUAL)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.RUNNING)
    school_year = models.ForeignKey(
        "academic.SchoolYear",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sync_runs",
    )
    # Filtros de la ejecución (nivel, estudiante)
    options = models.JSONField(default=dict, blank=True)

    students_processed = models.PositiveIntegerField(default=0)
    records_created = models.PositiveIntegerField(default=0)
    records_updated = models.PositiveIntegerField(default=0)
    errors = models.JSONField(default=list, blank=True)
    # Último evento de progreso (fase, procesados, total, mensaje)
    progress = models.JSONField(default=dict, blank=True)

    triggered_by = models.CharField(max_length=150, blank=True)
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_seconds = models.FloatField(null=True, blank=True)

    class Meta:
        ordering = ["-started_at", "-id"]
        verbose_name = "Ejecución de sincronización"
        verbose_name_plural = "Ejecuciones de sincronización"

    def __str__(self) -> str:
        return f"SyncRun({self.id}) {self.sync_type} {self.status}"

    @property
    def is_finished(self) -> bool:
        return self.status in self.FINAL_STATUSES

    def set_progress(self, progress: dict) -> None:
        self.progress = dict(progress)
        self.save(update_fields=["progress"])

    def mark_finished(
        self,
        *,
        status: str,
        students_processed: int = 0,
        records_created: int = 0,
        records_updated: int = 0,
        errors: list[dict] | None = None,
    ) -> None:
        if self.is_finished:
            raise ValueError(f"La ejecución {self.id} ya fue finalizada con estado {self.status}.")
        if status not in self.FINAL_STATUSES:
            raise ValueError(f"Estado final inválido: {status}")

        self.status = status
        self.students_processed = students_processed
        self.records_created = records_created
        self.records_updated = records_updated
        self.errors = list(errors or [])
        self.completed_at = timezone.now()
        self.duration_seconds = max(0.0, (self.completed_at - self.started_at).total_seconds())
        self.save(
            update_fields=[
                "status",
                "students_processed",
                "records_created",
                "records_updated",
                "errors",
                "completed_at",
                "duration_seconds",
            ]
        )

    def mark_error(self, message: str, *, errors: list[dict] | None = None, **counts) -> None:
        self.mark_finished(
            status=self.Status.ERROR,
            errors=[{"student_id": 0, "poll_id": 0, "error": message}, *(errors or [])],
            **counts,
        )


class SyncWatermark(models.Model):
    """Última marca `updated_at` importada por tabla de Supabase."""

    table = models.CharField(max_length=64, unique=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    rows_imported = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["table"]

    def __str__(self) -> str:
        return f"{self.table}: {self.last_synced_at or 'nunca'}"
