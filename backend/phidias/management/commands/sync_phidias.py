from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from academic.levels import parse_level
from phidias.client import PhidiasClient
from phidias.models import SyncRun
from phidias.progress import SyncProgress
from phidias.sync import PhidiasSyncService


class Command(BaseCommand):
    help = (
        "Sincroniza las faltas registradas en las encuestas de Phidias. "
        "Pensado para ejecutarse periódicamente (cron)."
    )

    def add_arguments(self, parser):
        parser.add_argument("--level", default="", help="Nivel (preschool, elementary, middle, high).")
        parser.add_argument("--student-id", dest="student_id", type=int, default=None, help="Solo este estudiante (id local).")
        parser.add_argument("--triggered-by", dest="triggered_by", default="cron", help="Quién dispara la ejecución.")
        parser.add_argument(
            "--manual",
            action="store_true",
            help="Registrar la ejecución como manual (por defecto: automática).",
        )
        parser.add_argument(
            "--test-connection",
            action="store_true",
            help="Solo verifica credenciales y conectividad con Phidias.",
        )

    def handle(self, *args, **options):
        client = PhidiasClient.from_settings()

        if options["test_connection"]:
            result = client.test_connection()
            if not result.success:
                raise CommandError(f"Conexión con Phidias fallida: {result.error}")
            records = len(result.data.records) if result.data else 0
            self.stdout.write(self.style.SUCCESS(f"Conexión con Phidias OK ({records} registros de prueba)."))
            return

        try:
            level = parse_level(options["level"])
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        verbosity = int(options.get("verbosity", 1))

        def on_progress(event: SyncProgress) -> None:
            if verbosity >= 2:
                self.stdout.write(f"[{event.phase.value}] {event.message}")

        service = PhidiasSyncService(client)
        result = service.run(
            sync_type=SyncRun.SyncType.MANUAL if options["manual"] else SyncRun.SyncType.AUTOMATIC,
            triggered_by=options["triggered_by"],
            level=level,
            student_id=options["student_id"],
            on_progress=on_progress,
        )

        self.stdout.write(
            f"Ejecución {result.run_id}: estado={result.status} estudiantes={result.students_processed} "
            f"creadas={result.records_created} actualizadas={result.records_updated} errores={len(result.errors)}"
        )
        if verbosity >= 2:
            for error in result.errors:
                self.stdout.write(f"  estudiante={error['student_id']} encuesta={error['poll_id']}: {error['error']}")

        if not result.success:
            raise CommandError(result.message or "La sincronización terminó con error.")
        self.stdout.write(self.style.SUCCESS("Sincronización con Phidias finalizada."))
