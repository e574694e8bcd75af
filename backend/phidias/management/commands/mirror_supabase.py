from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from academic.services import NoActiveSchoolYear
from phidias.supabase_mirror import (
    FOLLOW_UPS_TABLE,
    INFRACTIONS_TABLE,
    STUDENTS_TABLE,
    SupabaseMirror,
    SupabaseMirrorError,
)


class Command(BaseCommand):
    help = "Importa de forma incremental estudiantes, faltas y seguimientos desde Supabase."

    def add_arguments(self, parser):
        parser.add_argument(
            "--table",
            dest="tables",
            action="append",
            choices=[STUDENTS_TABLE, INFRACTIONS_TABLE, FOLLOW_UPS_TABLE],
            help="Tabla a importar (repetible). Por defecto, todas.",
        )

    def handle(self, *args, **options):
        try:
            mirror = SupabaseMirror.from_settings()
            results = mirror.run(options.get("tables"))
        except (SupabaseMirrorError, NoActiveSchoolYear) as exc:
            raise CommandError(str(exc)) from exc

        failed = 0
        for result in results:
            failed += len(result.errors)
            self.stdout.write(
                f"{result.table}: importadas={result.imported} omitidas={result.skipped} "
                f"errores={len(result.errors)} marca={result.watermark or '-'}"
            )
            for error in result.errors[:20]:
                self.stdout.write(self.style.WARNING(f"  {error}"))

        if failed:
            self.stdout.write(self.style.WARNING(f"Importación terminada con {failed} errores."))
        else:
            self.stdout.write(self.style.SUCCESS("Importación desde Supabase finalizada."))
