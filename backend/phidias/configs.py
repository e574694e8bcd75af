from __future__ import annotations

from academic.services import get_active_school_year

from .models import SeguimientoConfig


def get_active_configs(*, level: str | None = None, school_year=None) -> list[SeguimientoConfig]:
    """Configuraciones activas del año escolar (por defecto, el activo).

    Lanza NoActiveSchoolYear si no hay año activo.
    """

    if school_year is None:
        school_year = get_active_school_year()

    queryset = SeguimientoConfig.objects.filter(school_year=school_year, is_active=True)
    if level:
        queryset = queryset.filter(academic_level=level)
    return list(queryset.order_by("academic_level", "infraction_type", "poll_id", "id"))
