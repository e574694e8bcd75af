from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from django.utils import timezone

from .models import SchoolYear, Trimester


class NoActiveSchoolYear(LookupError):
    """No hay un año escolar marcado como activo."""

    def __init__(self, message: str = "No hay un año escolar activo configurado."):
        super().__init__(message)


@dataclass(frozen=True)
class TrimesterRef:
    id: int
    name: str


def get_active_school_year() -> SchoolYear:
    school_year = SchoolYear.objects.filter(is_active=True).order_by("-start_date").first()
    if school_year is None:
        raise NoActiveSchoolYear()
    return school_year


def _as_local_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    return value


def resolve_trimester(on_date: date | datetime, school_year_id: int) -> TrimesterRef | None:
    """Trimestre que contiene la fecha (rango inclusivo) dentro del año escolar.

    Si hay trimestres solapados gana el primero según (order, start_date, id).
    Una fecha fuera de todo rango retorna None.
    """

    target = _as_local_date(on_date)
    trimester = (
        Trimester.objects.filter(
            school_year_id=school_year_id,
            start_date__lte=target,
            end_date__gte=target,
        )
        .order_by("order", "start_date", "id")
        .values("id", "name")
        .first()
    )
    if trimester is None:
        return None
    return TrimesterRef(id=trimester["id"], name=trimester["name"])
