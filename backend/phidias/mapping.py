"""Transformación de un registro de encuesta de Phidias a una falta local.

Los campos vienen como una lista plana de items (nombre, valor). Cada campo de
la falta se extrae con una regla (campo, predicado, extractor): la primera
coincidencia gana y la ausencia del item deja el campo vacío.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Callable

from django.utils import timezone

from academic.levels import extract_infraction_number, normalize_text
from academic.services import TrimesterRef, resolve_trimester

from .client import ExternalRecord, PollItem

HASH_PREFIX = "phidias_"
DIAGNOSIS_OBSERVATION = "Estudiante con diagnóstico"
_YES_VALUES = {"si", "yes", "true", "1"}


def infraction_hash(record_id: int) -> str:
    return f"{HASH_PREFIX}{int(record_id)}"


def epoch_to_datetime(value: Any) -> datetime | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=dt_timezone.utc)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _name_contains(*needles: str) -> Callable[[PollItem], bool]:
    normalized = tuple(normalize_text(needle) for needle in needles)

    def predicate(item: PollItem) -> bool:
        name = normalize_text(item.name)
        return any(needle in name for needle in normalized)

    return predicate


def _date_item(item: PollItem) -> bool:
    return "fecha" in normalize_text(item.name) and _is_number(item.value)


def _text(item: PollItem) -> str:
    return "" if item.value is None else str(item.value).strip()


def _yes(item: PollItem) -> bool:
    return normalize_text(_text(item)) in _YES_VALUES


@dataclass(frozen=True)
class FieldRule:
    field: str
    matches: Callable[[PollItem], bool]
    extract: Callable[[PollItem], Any]


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("occurred_at", _date_item, lambda item: epoch_to_datetime(item.value)),
    FieldRule("description", _name_contains("falta según manual"), _text),
    FieldRule("detail", _name_contains("descripción"), _text),
    FieldRule("remedial_actions", _name_contains("acciones reparadoras", "acción"), _text),
    FieldRule("has_diagnosis", _name_contains("diagnóstico"), _yes),
)


def extract_fields(items: tuple[PollItem, ...] | list[PollItem]) -> dict[str, Any]:
    """Aplica FIELD_RULES; solo incluye los campos cuyo item existe."""
    values: dict[str, Any] = {}
    for rule in FIELD_RULES:
        for item in items:
            if rule.matches(item):
                values[rule.field] = rule.extract(item)
                break
    return values


@dataclass(frozen=True)
class InfractionData:
    hash: str
    external_id: int
    student_id: int | None
    student_code: str
    school_year_id: int
    infraction_type: str
    number: int | None
    description: str
    detail: str
    remedial_actions: str
    author: str
    occurred_at: datetime
    trimester_id: int | None
    trimester_name: str
    level: str
    section: str
    has_diagnosis: bool
    observations: str
    observations_author: str
    observations_at: datetime | None
    external_created_at: datetime | None
    external_edited_at: datetime | None

    def model_fields(self) -> dict[str, Any]:
        """Campos para crear/actualizar `Infraction` (sin el hash)."""
        values = asdict(self)
        values.pop("hash")
        return values


def map_to_infraction(
    record: ExternalRecord,
    student: Any,
    *,
    school_year_id: int,
    infraction_type: str,
    academic_level: str,
    now: datetime | None = None,
    trimester_resolver: Callable[[datetime, int], TrimesterRef | None] = resolve_trimester,
) -> InfractionData:
    fields = extract_fields(record.items)

    occurred_at = fields.get("occurred_at") or now or timezone.now()
    description = fields.get("description", "")
    has_diagnosis = bool(fields.get("has_diagnosis", False))
    author = record.author

    trimester = trimester_resolver(occurred_at, school_year_id)

    return InfractionData(
        hash=infraction_hash(record.id),
        external_id=record.id,
        student_id=getattr(student, "id", None),
        student_code=str(getattr(student, "code", "") or getattr(student, "external_id", "") or ""),
        school_year_id=school_year_id,
        infraction_type=infraction_type,
        number=extract_infraction_number(description),
        description=description,
        detail=fields.get("detail", ""),
        remedial_actions=fields.get("remedial_actions", ""),
        author=author,
        occurred_at=occurred_at,
        trimester_id=trimester.id if trimester else None,
        trimester_name=trimester.name if trimester else "",
        level=academic_level,
        section=getattr(student, "grade", "") or "",
        has_diagnosis=has_diagnosis,
        observations=DIAGNOSIS_OBSERVATION if has_diagnosis else "",
        observations_author=author if has_diagnosis else "",
        observations_at=occurred_at if has_diagnosis else None,
        external_created_at=epoch_to_datetime(record.timestamp),
        external_edited_at=epoch_to_datetime(record.last_edit),
    )
