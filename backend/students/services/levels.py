from __future__ import annotations

from django.db.models import QuerySet

from academic.levels import level_for_student

from ..models import Student


def student_ids_for_level(queryset: QuerySet[Student], level: str) -> list[int]:
    """Ids de estudiantes cuyo nivel (sección o grado) coincide con `level`.

    El nivel no es una columna: se deriva del texto de grado/sección, por eso
    el filtrado se hace en memoria sobre una proyección liviana.
    """

    return [
        student_id
        for student_id, grade, section in queryset.values_list("id", "grade", "section")
        if level_for_student(grade, section) == level
    ]


def filter_by_level(queryset: QuerySet[Student], level: str) -> QuerySet[Student]:
    return queryset.filter(id__in=student_ids_for_level(queryset, level))
