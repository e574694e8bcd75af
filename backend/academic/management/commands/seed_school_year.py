from __future__ import annotations

from datetime import date, timedelta

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from academic.models import SchoolYear, Trimester


def _parse_date(value: str, *, option: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise CommandError(f"{option} inválida (use AAAA-MM-DD): {value}") from exc


def split_in_trimesters(start: date, end: date, count: int) -> list[tuple[date, date]]:
    """Divide [start, end] en `count` rangos contiguos sin huecos ni solapes."""
    total_days = (end - start).days + 1
    if count < 1 or total_days < count:
        raise ValueError("No es posible dividir el año en esa cantidad de trimestres.")

    ranges: list[tuple[date, date]] = []
    cursor = start
    for index in range(count):
        remaining = count - index
        span = ((end - cursor).days + 1) // remaining
        range_end = end if remaining == 1 else cursor + timedelta(days=span - 1)
        ranges.append((cursor, range_end))
        cursor = range_end + timedelta(days=1)
    return ranges


class Command(BaseCommand):
    help = "Crea (o actualiza) un año escolar con sus trimestres y opcionalmente lo activa."

    def add_arguments(self, parser):
        parser.add_argument("--name", required=True, help="Nombre del año escolar, ej: 2025-2026")
        parser.add_argument("--start", required=True, help="Fecha de inicio (AAAA-MM-DD)")
        parser.add_argument("--end", required=True, help="Fecha de fin (AAAA-MM-DD)")
        parser.add_argument("--trimesters", type=int, default=3, help="Cantidad de trimestres a generar")
        parser.add_argument("--activate", action="store_true", help="Marca el año como activo")

    def handle(self, *args, **options):
        start = _parse_date(options["start"], option="--start")
        end = _parse_date(options["end"], option="--end")
        if start > end:
            raise CommandError("--end debe ser posterior a --start.")

        try:
            ranges = split_in_trimesters(start, end, int(options["trimesters"]))
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        with transaction.atomic():
            school_year, created = SchoolYear.objects.update_or_create(
                name=options["name"].strip(),
                defaults={"start_date": start, "end_date": end},
            )
            if options["activate"] and not school_year.is_active:
                school_year.is_active = True
                school_year.save()

            school_year.trimesters.all().delete()
            for order, (range_start, range_end) in enumerate(ranges, start=1):
                Trimester.objects.create(
                    school_year=school_year,
                    name=f"Trimestre {order}",
                    order=order,
                    start_date=range_start,
                    end_date=range_end,
                )

        action = "creado" if created else "actualizado"
        self.stdout.write(
            self.style.SUCCESS(
                f"Año escolar {school_year.name} {action} con {len(ranges)} trimestres"
                f"{' (activo)' if school_year.is_active else ''}."
            )
        )
