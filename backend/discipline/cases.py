"""Casos de faltas Tipo II y el estado de sus tres seguimientos.

Un caso no se persiste: se recalcula cada vez a partir de la falta y de los
seguimientos registrados. Las funciones de este módulo no tocan la base de
datos, salvo ``load_cases`` que solo toma una instantánea para pasarla a
``derive_cases``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from academic.levels import level_for_student
from academic.services import get_active_school_year
from students.models import Student

from .models import FollowUp, Infraction

logger = logging.getLogger(__name__)

CASE_INFRACTION_TYPE = "Tipo II"
FOLLOW_UP_NUMBERS = (1, 2, 3)
# Meses después de la falta en que se espera cada seguimiento
FOLLOW_UP_MONTHS = (1, 3, 6)

UNKNOWN_STUDENT_NAME = "Desconocido"
UNKNOWN_SECTION = "N/A"


@dataclass(frozen=True)
class CaseItem:
	infraction_id: int
	infraction_hash: str
	student_id: int | None
	student_name: str
	section: str
	grade: str
	level: str
	infraction_date: date
	infraction_number: int | None
	description: str
	completed_numbers: tuple[int, ...]
	expected_dates: tuple[date, ...]
	pending: int
	closed: bool
	next_number: int | None
	next_date: date | None
	overdue: bool

	@property
	def completed(self) -> int:
		return len(self.completed_numbers)

	@property
	def status(self) -> str:
		return "closed" if self.closed else "open"


def _as_date(value: date | datetime) -> date:
	if isinstance(value, datetime):
		if timezone.is_aware(value):
			value = timezone.localtime(value)
		return value.date()
	return value


def expected_follow_up_dates(infraction_date: date | datetime) -> list[date]:
	base = _as_date(infraction_date)
	return [base + relativedelta(months=months) for months in FOLLOW_UP_MONTHS]


def _student_name(student: Any) -> str:
	full_name = getattr(student, "full_name", None)
	if full_name:
		return str(full_name)
	parts = [getattr(student, "first_name", ""), getattr(student, "last_name", "")]
	return " ".join(part for part in parts if part).strip() or UNKNOWN_STUDENT_NAME


def _sort_key(case: CaseItem):
	if case.closed:
		return (1, 0, 0, -case.infraction_date.toordinal(), -case.infraction_id)
	return (
		0,
		0 if case.overdue else 1,
		case.next_date.toordinal(),
		case.infraction_date.toordinal(),
		case.infraction_id,
	)


def derive_cases(
	infractions: Iterable[Any],
	follow_ups: Iterable[Any],
	students: Iterable[Any],
	level: str | None = None,
	*,
	today: date | None = None,
) -> list[CaseItem]:
	"""Proyecta cada falta Tipo II a su caso.

	Acepta instancias de modelo o cualquier objeto con los mismos atributos.
	Un estudiante inexistente no interrumpe el cálculo: el caso sale con
	nombre genérico y sección "N/A".
	"""

	today = today or timezone.localdate()
	students_by_id = {student.id: student for student in students}

	numbers_by_infraction: dict[int, set[int]] = defaultdict(set)
	for follow_up in follow_ups:
		if follow_up.number in FOLLOW_UP_NUMBERS:
			numbers_by_infraction[follow_up.infraction_id].add(follow_up.number)

	cases: list[CaseItem] = []
	for infraction in infractions:
		if infraction.infraction_type != CASE_INFRACTION_TYPE:
			continue

		student = students_by_id.get(infraction.student_id)
		if student is None:
			logger.warning(
				"discipline.cases.missing_student",
				extra={"infraction_id": infraction.id, "student_id": infraction.student_id},
			)
			student_level = getattr(infraction, "level", "") or ""
			student_name = UNKNOWN_STUDENT_NAME
			section = UNKNOWN_SECTION
			grade = UNKNOWN_SECTION
		else:
			student_level = level_for_student(student.grade, getattr(student, "section", ""))
			student_name = _student_name(student)
			section = student_level
			grade = student.grade or UNKNOWN_SECTION

		if level and student_level != level:
			continue

		infraction_date = _as_date(infraction.occurred_at)
		schedule = expected_follow_up_dates(infraction_date)
		present = numbers_by_infraction.get(infraction.id, set())
		missing = [number for number in FOLLOW_UP_NUMBERS if number not in present]
		closed = not missing
		next_number = None if closed else missing[0]
		next_date = None if closed else schedule[next_number - 1]

		cases.append(
			CaseItem(
				infraction_id=infraction.id,
				infraction_hash=getattr(infraction, "hash", ""),
				student_id=infraction.student_id,
				student_name=student_name,
				section=section,
				grade=grade,
				level=student_level,
				infraction_date=infraction_date,
				infraction_number=getattr(infraction, "number", None),
				description=getattr(infraction, "description", "") or "",
				completed_numbers=tuple(sorted(present)),
				expected_dates=tuple(schedule),
				pending=len(missing),
				closed=closed,
				next_number=next_number,
				next_date=next_date,
				overdue=bool(next_date and next_date < today),
			)
		)

	return sorted(cases, key=_sort_key)


def load_cases(level: str | None = None, school_year=None, *, today: date | None = None) -> list[CaseItem]:
	if school_year is None:
		school_year = get_active_school_year()

	infractions = list(
		Infraction.objects.filter(school_year=school_year, infraction_type=CASE_INFRACTION_TYPE).only(
			"id", "hash", "student_id", "infraction_type", "occurred_at", "number", "description", "level"
		)
	)
	infraction_ids = [infraction.id for infraction in infractions]
	follow_ups = list(FollowUp.objects.filter(infraction_id__in=infraction_ids).only("infraction_id", "number"))
	student_ids = {infraction.student_id for infraction in infractions if infraction.student_id}
	students = list(Student.objects.filter(id__in=student_ids))
	return derive_cases(infractions, follow_ups, students, level, today=today)
