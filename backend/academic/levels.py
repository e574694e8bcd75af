"""Clasificación de grados en niveles académicos.

Los nombres de grado llegan como texto libre desde Phidias o desde la
importación de estudiantes ("Décimo A", "Kínder 5 B", "10°"). Este módulo
los normaliza y los asigna a uno de los cuatro niveles canónicos usados en
configuraciones, alertas y reportes.
"""

from __future__ import annotations

import re
import unicodedata

PRESCHOOL = "Preschool"
ELEMENTARY = "Elementary"
MIDDLE_SCHOOL = "Middle School"
HIGH_SCHOOL = "High School"

UNSPECIFIED_LEVEL = "No definido"

LEVELS = (PRESCHOOL, ELEMENTARY, MIDDLE_SCHOOL, HIGH_SCHOOL)

LEVEL_CHOICES = [
    (PRESCHOOL, "Preescolar"),
    (ELEMENTARY, "Primaria"),
    (MIDDLE_SCHOOL, "Secundaria"),
    (HIGH_SCHOOL, "Media"),
]

LEVEL_SLUGS = {
    "preschool": PRESCHOOL,
    "elementary": ELEMENTARY,
    "middle": MIDDLE_SCHOOL,
    "high": HIGH_SCHOOL,
}

# Etiquetas de sección que ya nombran un nivel (se usan sin reclasificar)
SECTION_ALIASES = {
    "preschool": PRESCHOOL,
    "mi taller": PRESCHOOL,
    "elementary": ELEMENTARY,
    "primary school": ELEMENTARY,
    "middle school": MIDDLE_SCHOOL,
    "high school": HIGH_SCHOOL,
}

# "Mi Taller" (kínder 1 a 3) se reporta dentro de Preschool.
_GRADE_NAMES = {
    PRESCHOOL: (
        "kinder 1",
        "kinder 2",
        "kinder 3",
        "kinder 4",
        "kinder 5",
        "prejardin",
        "jardin",
        "transicion",
        "primero",
    ),
    ELEMENTARY: ("segundo", "tercero", "cuarto", "quinto"),
    MIDDLE_SCHOOL: ("sexto", "septimo", "octavo", "noveno"),
    HIGH_SCHOOL: ("decimo segundo", "decimo", "undecimo", "once", "duodecimo"),
}

# (prefijo normalizado, nivel), del más específico al más general
GRADE_RULES: tuple[tuple[str, str], ...] = tuple(
    sorted(
        ((name, level) for level, names in _GRADE_NAMES.items() for name in names),
        key=lambda rule: len(rule[0]),
        reverse=True,
    )
)

_KINDER_NUMBER_RE = re.compile(r"^(?:kinder|k)\s*(\d)\b")
_GRADE_NUMBER_RE = re.compile(r"^(?:grado|grade)?\s*(\d{1,2})(?!\d)")
_INFRACTION_NUMBER_RE = re.compile(r"^(?:(?:tipo\s+)?i{1,3}\s*[-.:)]?\s*)?(\d+)", re.IGNORECASE)


def normalize_text(value: str | None) -> str:
    """Minúsculas, sin tildes y con espacios colapsados."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value).lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return " ".join(stripped.split())


def _level_for_number(number: int) -> str:
    if number == 1:
        return PRESCHOOL
    if 2 <= number <= 5:
        return ELEMENTARY
    if 6 <= number <= 9:
        return MIDDLE_SCHOOL
    if 10 <= number <= 12:
        return HIGH_SCHOOL
    return UNSPECIFIED_LEVEL


def classify_level(grade_label: str | None) -> str:
    """Asigna un nivel académico a un nombre de grado.

    Nunca lanza excepción: etiquetas vacías o no reconocidas retornan
    ``UNSPECIFIED_LEVEL``.
    """

    label = normalize_text(grade_label)
    if not label:
        return UNSPECIFIED_LEVEL

    for prefix, level in GRADE_RULES:
        if label.startswith(prefix):
            return level

    kinder = _KINDER_NUMBER_RE.match(label)
    if kinder:
        return PRESCHOOL if 1 <= int(kinder.group(1)) <= 5 else UNSPECIFIED_LEVEL

    numeric = _GRADE_NUMBER_RE.match(label)
    if numeric:
        return _level_for_number(int(numeric.group(1)))

    return UNSPECIFIED_LEVEL


def level_for_student(grade: str | None, section: str | None = None) -> str:
    """Nivel de un estudiante: la sección manda si ya es un nivel canónico."""
    alias = SECTION_ALIASES.get(normalize_text(section))
    if alias:
        return alias
    return classify_level(grade)


def extract_infraction_number(text: str | None) -> int | None:
    """Número de falta al inicio del texto del manual ("12. Llegar tarde" -> 12).

    Admite un prefijo de tipo en romanos ("II-3 ..." -> 3). Retorna None si
    no hay número.
    """

    if not text:
        return None
    match = _INFRACTION_NUMBER_RE.match(str(text).strip())
    if not match:
        return None
    return int(match.group(1))


def parse_level(value: str | None) -> str | None:
    """Nivel desde un parámetro de consulta (slug o nombre canónico).

    Vacío retorna None; un valor desconocido lanza ValueError.
    """

    raw = (value or "").strip()
    if not raw:
        return None
    level = LEVEL_SLUGS.get(raw.lower(), raw)
    if level not in LEVELS:
        raise ValueError(f"Nivel inválido: {raw}")
    return level
