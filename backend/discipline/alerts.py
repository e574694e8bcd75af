from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable

from academic.levels import level_for_student
from academic.services import get_active_school_year
from students.models import Student

from .models import AlertSetting, Infraction

logger = logging.getLogger(__name__)

ALERT_WARNING = "warning"
ALERT_CRITICAL = "critical"


@dataclass(frozen=True)
class Thresholds:
	primary: int
	secondary: int


@dataclass(frozen=True)
class StudentAlert:
	student_id: int
	student_name: str
	grade: str
	level: str
	type_i_count: int
	type_ii_count: int
	alert: str


def alert_for_count(count: int, thresholds: Thresholds) -> str | None:
	if count >= thresholds.secondary:
		return ALERT_CRITICAL
	if count >= thresholds.primary:
		return ALERT_WARNING
	return None


def thresholds_by_level() -> dict[str, Thresholds]:
	return {
		setting.level: Thresholds(primary=setting.primary_threshold, secondary=setting.secondary_threshold)
		for setting in AlertSetting.objects.all()
	}


def compute_student_alerts(
	students: Iterable[Any],
	infractions: Iterable[Any],
	thresholds: dict[str, Thresholds],
	level: str | None = None,
) -> list[StudentAlert]:
	"""Alertas por acumulación de faltas Tipo I sin atender.

	Crítica si el conteo alcanza el umbral secundario del nivel, advertencia
	si alcanza el primario. Niveles sin configuración no generan alertas.
	"""

	type_i: Counter[int] = Counter()
	type_ii: Counter[int] = Counter()
	for infraction in infractions:
		if infraction.attended or infraction.student_id is None:
			continue
		if infraction.infraction_type == Infraction.Type.TYPE_I:
			type_i[infraction.student_id] += 1
		elif infraction.infraction_type == Infraction.Type.TYPE_II:
			type_ii[infraction.student_id] += 1

	missing_levels: set[str] = set()
	alerts: list[StudentAlert] = []
	for student in students:
		student_level = level_for_student(student.grade, student.section)
		if level and student_level != level:
			continue

		level_thresholds = thresholds.get(student_level)
		if level_thresholds is None:
			missing_levels.add(student_level)
			continue

		count = type_i.get(student.id, 0)
		alert = alert_for_count(count, level_thresholds)
		if alert is None:
			continue

		alerts.append(
			StudentAlert(
				student_id=student.id,
				student_name=student.full_name,
				grade=student.grade,
				level=student_level,
				type_i_count=count,
				type_ii_count=type_ii.get(student.id, 0),
				alert=alert,
			)
		)

	if missing_levels:
		logger.warning("discipline.alerts.missing_settings", extra={"levels": sorted(missing_levels)})

	return sorted(alerts, key=lambda item: (item.alert != ALERT_CRITICAL, -item.type_i_count, item.student_name))


def load_alerts(level: str | None = None, school_year=None) -> list[StudentAlert]:
	if school_year is None:
		school_year = get_active_school_year()

	students = Student.objects.filter(school_year=school_year, is_active=True)
	infractions = Infraction.objects.filter(school_year=school_year, attended=False).only(
		"student_id", "infraction_type", "attended"
	)
	return compute_student_alerts(students, infractions, thresholds_by_level(), level)
