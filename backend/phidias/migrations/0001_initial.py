import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("academic", "0001_initial"),
        ("discipline", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SeguimientoConfig",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("poll_id", models.PositiveIntegerField(verbose_name="Id de encuesta (Phidias)")),
                ("name", models.CharField(max_length=200, verbose_name="Nombre")),
                ("description", models.TextField(blank=True, verbose_name="Descripción")),
                (
                    "infraction_type",
                    models.CharField(
                        choices=[("Tipo I", "Tipo I"), ("Tipo II", "Tipo II"), ("Tipo III", "Tipo III")],
                        max_length=10,
                        verbose_name="Tipo de falta",
                    ),
                ),
                (
                    "academic_level",
                    models.CharField(
                        choices=[
                            ("Preschool", "Preescolar"),
                            ("Elementary", "Primaria"),
                            ("Middle School", "Secundaria"),
                            ("High School", "Media"),
                        ],
                        max_length=20,
                        verbose_name="Nivel académico",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Activa")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "school_year",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="seguimiento_configs",
                        to="academic.schoolyear",
                        verbose_name="Año escolar",
                    ),
                ),
            ],
            options={
                "verbose_name": "Configuración de seguimiento",
                "verbose_name_plural": "Configuraciones de seguimiento",
                "ordering": ["academic_level", "infraction_type", "poll_id"],
            },
        ),
        migrations.AddConstraint(
            model_name="seguimientoconfig",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_active", True)),
                fields=("poll_id", "school_year"),
                name="phidias_unique_active_poll_per_year",
            ),
        ),
        migrations.CreateModel(
            name="SyncRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "sync_type",
                    models.CharField(
                        choices=[("manual", "Manual"), ("automatic", "Automática")],
                        default="manual",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "En proceso"),
                            ("success", "Exitosa"),
                            ("partial", "Parcial"),
                            ("error", "Error"),
                        ],
                        default="running",
                        max_length=16,
                    ),
                ),
                ("options", models.JSONField(blank=True, default=dict)),
                ("students_processed", models.PositiveIntegerField(default=0)),
                ("records_created", models.PositiveIntegerField(default=0)),
                ("records_updated", models.PositiveIntegerField(default=0)),
                ("errors", models.JSONField(blank=True, default=list)),
                ("progress", models.JSONField(blank=True, default=dict)),
                ("triggered_by", models.CharField(blank=True, max_length=150)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_seconds", models.FloatField(blank=True, null=True)),
                (
                    "school_year",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sync_runs",
                        to="academic.schoolyear",
                    ),
                ),
            ],
            options={
                "verbose_name": "Ejecución de sincronización",
                "verbose_name_plural": "Ejecuciones de sincronización",
                "ordering": ["-started_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="SyncWatermark",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("table", models.CharField(max_length=64, unique=True)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("rows_imported", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["table"],
            },
        ),
    ]
