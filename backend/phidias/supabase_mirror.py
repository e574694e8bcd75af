"""Importación incremental desde la base Supabase del sistema anterior.

Tablas ``estudiantes``, ``faltas`` y ``seguimientos`` (``casos`` solo se lee
para resolver la falta de cada seguimiento). Cada tabla avanza su propia
marca ``updated_at`` en ``SyncWatermark``; las filas se leen paginadas y
ordenadas para que la marca nunca salte filas.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time
from typing import Any, Iterator

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from supabase import Client, create_client

from academic.levels import LEVELS, level_for_student
from academic.services import get_active_school_year, resolve_trimester
from discipline.models import FollowUp, Infraction
from students.models import Student

from .models import SyncWatermark

logger = logging.getLogger(__name__)

STUDENTS_TABLE = "estudiantes"
INFRACTIONS_TABLE = "faltas"
CASES_TABLE = "casos"
FOLLOW_UPS_TABLE = "seguimientos"

_DIGIT_RE = re.compile(r"(\d)")


class SupabaseMirrorError(Exception):
    pass


@dataclass
class MirrorResult:
    table: str
    imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    watermark: datetime | None = None


def _to_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, dt_time.min)
    else:
        text = str(value)
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text[:10])
            parsed = datetime.combine(day, dt_time.min) if day else None
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_current_timezone())
    return parsed


def _split_name(full_name: str) -> tuple[str, str]:
    # En origen el nombre llega como "Apellidos Nombres" en un solo campo
    parts = (full_name or "").split()
    if len(parts) <= 2:
        return " ".join(parts[1:]), parts[0] if parts else ""
    return " ".join(parts[2:]), " ".join(parts[:2])


def follow_up_number(value: Any) -> int | None:
    """Número de seguimiento desde ``tipo_seguimiento`` ("Seguimiento 2" -> 2)."""
    match = _DIGIT_RE.search(str(value or ""))
    if not match:
        return None
    number = int(match.group(1))
    return number if number in (1, 2, 3) else None


class SupabaseMirror:
    def __init__(self, client: Client, *, page_size: int = 1000, school_year=None):
        self.client = client
        self.page_size = max(1, int(page_size))
        self._school_year = school_year

    @classmethod
    def from_settings(cls, **kwargs) -> "SupabaseMirror":
        url = getattr(settings, "SUPABASE_URL", "")
        key = getattr(settings, "SUPABASE_KEY", "")
        if not url or not key:
            raise SupabaseMirrorError("SUPABASE_URL y SUPABASE_KEY deben estar configurados.")
        kwargs.setdefault("page_size", getattr(settings, "SUPABASE_PAGE_SIZE", 1000))
        return cls(create_client(url, key), **kwargs)

    @property
    def school_year(self):
        if self._school_year is None:
            self._school_year = get_active_school_year()
        return self._school_year

    def _rows_since(self, table: str, since: datetime | None) -> Iterator[dict]:
        start = 0
        while True:
            query = self.client.table(table).select("*")
            if since is not None:
                query = query.gt("updated_at", since.isoformat())
            response = query.order("updated_at").range(start, start + self.page_size - 1).execute()
            rows = response.data or []
            yield from rows
            if len(rows) < self.page_size:
                return
            start += self.page_size

    def _mirror_table(self, table: str, import_row) -> MirrorResult:
        watermark, _ = SyncWatermark.objects.get_or_create(table=table)
        result = MirrorResult(table=table, watermark=watermark.last_synced_at)
        logger.info("supabase_mirror.table_started", extra={"table": table, "since": watermark.last_synced_at})

        # Tras la primera fila fallida la marca no avanza, para releerla en la próxima ejecución
        blocked = False
        for row in self._rows_since(table, watermark.last_synced_at):
            try:
                with transaction.atomic():
                    imported = import_row(row)
            except Exception as exc:
                logger.exception("supabase_mirror.row_failed", extra={"table": table, "row_id": row.get("id")})
                result.errors.append(f"{table} {row.get('id') or row.get('hash')}: {exc}")
                blocked = True
                continue

            if imported:
                result.imported += 1
            else:
                result.skipped += 1

            row_updated_at = _to_datetime(row.get("updated_at"))
            if not blocked and row_updated_at and (result.watermark is None or row_updated_at > result.watermark):
                result.watermark = row_updated_at

        watermark.last_synced_at = result.watermark
        watermark.rows_imported += result.imported
        watermark.save(update_fields=["last_synced_at", "rows_imported", "updated_at"])

        logger.info(
            "supabase_mirror.table_finished",
            extra={"table": table, "imported": result.imported, "skipped": result.skipped, "errors": len(result.errors)},
        )
        return result

    def _import_student(self, row: dict) -> bool:
        code = str(row.get("codigo") or "").strip()
        if not code:
            return False
        first_name, last_name = _split_name(str(row.get("nombre") or ""))
        nivel = str(row.get("nivel") or "").strip()
        Student.objects.update_or_create(
            school_year=self.school_year,
            code=code,
            defaults={
                "first_name": first_name,
                "last_name": last_name,
                "grade": str(row.get("grado") or "").strip(),
                "section": nivel,
            },
        )
        return True

    def _import_infraction(self, row: dict) -> bool:
        hash_value = str(row.get("hash") or "").strip()
        infraction_type = str(row.get("tipo_falta") or "").strip()
        occurred_at = _to_datetime(row.get("fecha"))
        if not hash_value or infraction_type not in Infraction.Type.values or occurred_at is None:
            return False

        existing = Infraction.objects.filter(hash=hash_value).only("id", "source").first()
        if existing is not None and existing.source == Infraction.Source.PHIDIAS:
            # Phidias manda sobre la copia histórica
            return False

        code = str(row.get("codigo_estudiante") or "").strip()
        student = Student.objects.filter(school_year=self.school_year, code=code).first() if code else None
        nivel = str(row.get("nivel") or "").strip()
        level = nivel if nivel in LEVELS else (level_for_student(student.grade, student.section) if student else "")
        trimester = resolve_trimester(occurred_at, self.school_year.id)

        defaults = {
            "source": Infraction.Source.SUPABASE,
            "student": student,
            "student_code": code,
            "school_year": self.school_year,
            "infraction_type": infraction_type,
            "number": row.get("numero_falta"),
            "description": row.get("descripcion_falta") or "",
            "detail": row.get("detalle_falta") or "",
            "remedial_actions": row.get("acciones_reparadoras") or "",
            "author": row.get("autor") or "",
            "occurred_at": occurred_at,
            "trimester_id": trimester.id if trimester else None,
            "trimester_name": trimester.name if trimester else str(row.get("trimestre") or ""),
            "level": level,
            "section": student.grade if student else "",
            "attended": bool(row.get("attended")),
            "attended_at": _to_datetime(row.get("attended_at")),
            "external_created_at": _to_datetime(row.get("created_at")),
            "external_edited_at": _to_datetime(row.get("updated_at")),
        }
        Infraction.objects.update_or_create(hash=hash_value, defaults=defaults)
        return True

    def _case_hashes(self, case_ids: list) -> dict:
        if not case_ids:
            return {}
        response = self.client.table(CASES_TABLE).select("id_caso,hash_falta").in_("id_caso", case_ids).execute()
        return {row["id_caso"]: row.get("hash_falta") for row in response.data or []}

    def _import_follow_up(self, row: dict, case_hashes: dict) -> bool:
        number = follow_up_number(row.get("tipo_seguimiento"))
        follow_up_date = _to_datetime(row.get("fecha_seguimiento"))
        hash_value = case_hashes.get(row.get("id_caso"))
        if number is None or follow_up_date is None or not hash_value:
            return False

        infraction = Infraction.objects.filter(hash=hash_value, infraction_type=Infraction.Type.TYPE_II).first()
        if infraction is None:
            return False

        FollowUp.objects.update_or_create(
            infraction=infraction,
            number=number,
            defaults={
                "date": timezone.localtime(follow_up_date).date(),
                "details": row.get("detalles") or "",
                "author": row.get("autor") or "",
            },
        )
        return True

    def mirror_students(self) -> MirrorResult:
        return self._mirror_table(STUDENTS_TABLE, self._import_student)

    def mirror_infractions(self) -> MirrorResult:
        return self._mirror_table(INFRACTIONS_TABLE, self._import_infraction)

    def mirror_follow_ups(self) -> MirrorResult:
        cache: dict = {}

        def import_row(row: dict) -> bool:
            case_id = row.get("id_caso")
            if case_id is not None and case_id not in cache:
                cache.update(self._case_hashes([case_id]))
            return self._import_follow_up(row, cache)

        return self._mirror_table(FOLLOW_UPS_TABLE, import_row)

    def run(self, tables: list[str] | None = None) -> list[MirrorResult]:
        """Importa las tablas en orden de dependencia (estudiantes antes que faltas)."""

        steps = (
            (STUDENTS_TABLE, self.mirror_students),
            (INFRACTIONS_TABLE, self.mirror_infractions),
            (FOLLOW_UPS_TABLE, self.mirror_follow_ups),
        )
        selected = set(tables) if tables else None
        # Sin año activo no hay a dónde importar; falla antes de leer filas
        self.school_year
        return [step() for table, step in steps if selected is None or table in selected]
