from __future__ import annotations

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from academic.levels import parse_level
from academic.services import NoActiveSchoolYear

from discipline.cases import load_cases


class Command(BaseCommand):
	help = (
		"Lista los casos Tipo II con seguimiento vencido o por vencer. "
		"Pensado para ejecutarse periódicamente (cron)."
	)

	def add_arguments(self, parser):
		parser.add_argument(
			"--days-before",
			dest="days_before",
			type=int,
			default=7,
			help="Ventana en días para 'por vencer' (default: 7).",
		)
		parser.add_argument(
			"--level",
			default="",
			help="Nivel (preschool, elementary, middle, high).",
		)

	def handle(self, *args, **options):
		today = timezone.localdate()
		cutoff = today + timedelta(days=int(options["days_before"]))

		try:
			level = parse_level(options["level"])
			cases = load_cases(level, today=today)
		except (ValueError, NoActiveSchoolYear) as exc:
			raise CommandError(str(exc)) from exc

		open_cases = [case for case in cases if not case.closed]
		overdue = [case for case in open_cases if case.overdue]
		due_soon = [case for case in open_cases if not case.overdue and case.next_date <= cutoff]

		self.stdout.write(
			f"Seguimientos: abiertos={len(open_cases)} vencidos={len(overdue)} por_vencer={len(due_soon)}"
		)

		for label, group in (("VENCIDO", overdue), ("POR VENCER", due_soon)):
			for case in group:
				self.stdout.write(
					f"[{label}] {case.student_name} ({case.grade}) falta {case.infraction_hash}: "
					f"seguimiento {case.next_number} esperado el {case.next_date:%Y-%m-%d}"
				)

		self.stdout.write(self.style.SUCCESS("Revisión de seguimientos finalizada."))
