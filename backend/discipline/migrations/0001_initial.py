import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


LEVEL_CHOICES = [
    ("Preschool", "Preescolar"),
    ("Elementary", "Primaria"),
    ("Middle School", "Secundaria"),
    ("High School", "Media"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("academic", "0001_initial"),
        ("students", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Infraction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("hash", models.CharField(max_length=64, unique=True, verbose_name="Hash")),
                (
                    "source",
                    models.CharField(
                        choices=[("PHIDIAS", "Phidias"), ("SUPABASE", "Supabase"), ("MANUAL", "Manual")],
                        default="PHIDIAS",
                        max_length=16,
                    ),
                ),
                ("external_id", models.BigIntegerField(blank=True, db_index=True, null=True, verbose_name="Id externo")),
                ("student_code", models.CharField(blank=True, db_index=True, max_length=30, verbose_name="Código estudiante")),
                (
                    "infraction_type",
                    models.CharField(
                        choices=[("Tipo I", "Tipo I"), ("Tipo II", "Tipo II"), ("Tipo III", "Tipo III")],
                        max_length=10,
                        verbose_name="Tipo de falta",
                    ),
                ),
                ("number", models.PositiveIntegerField(blank=True, null=True, verbose_name="Número de falta")),
                ("description", models.TextField(blank=True, verbose_name="Falta según manual")),
                ("detail", models.TextField(blank=True, verbose_name="Descripción")),
                ("remedial_actions", models.TextField(blank=True, verbose_name="Acciones reparadoras")),
                ("author", models.CharField(blank=True, max_length=200, verbose_name="Autor")),
                ("occurred_at", models.DateTimeField(verbose_name="Fecha de la falta")),
                ("trimester_name", models.CharField(blank=True, max_length=50, verbose_name="Nombre del trimestre")),
                ("level", models.CharField(blank=True, choices=LEVEL_CHOICES, max_length=20, verbose_name="Nivel")),
                ("section", models.CharField(blank=True, max_length=60, verbose_name="Sección")),
                ("has_diagnosis", models.BooleanField(default=False, verbose_name="Estudiante con diagnóstico")),
                ("observations", models.TextField(blank=True, verbose_name="Observaciones")),
                ("observations_author", models.CharField(blank=True, max_length=200)),
                ("observations_at", models.DateTimeField(blank=True, null=True)),
                ("external_created_at", models.DateTimeField(blank=True, null=True, verbose_name="Creación en origen")),
                ("external_edited_at", models.DateTimeField(blank=True, null=True, verbose_name="Última edición en origen")),
                ("attended", models.BooleanField(default=False, verbose_name="Atendida")),
                ("attended_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "attended_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attended_infractions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "school_year",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="infractions",
                        to="academic.schoolyear",
                        verbose_name="Año escolar",
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="infractions",
                        to="students.student",
                        verbose_name="Estudiante",
                    ),
                ),
                (
                    "trimester",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="infractions",
                        to="academic.trimester",
                        verbose_name="Trimestre",
                    ),
                ),
            ],
            options={
                "verbose_name": "Falta",
                "verbose_name_plural": "Faltas",
                "ordering": ["-occurred_at", "-id"],
                "indexes": [
                    models.Index(fields=["school_year", "infraction_type", "level"], name="discipline_infr_type_level_idx"),
                    models.Index(fields=["external_edited_at"], name="discipline_infr_edited_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="FollowUp",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "number",
                    models.PositiveSmallIntegerField(
                        choices=[(1, "Seguimiento 1"), (2, "Seguimiento 2"), (3, "Seguimiento 3")],
                        verbose_name="Número de seguimiento",
                    ),
                ),
                ("date", models.DateField(verbose_name="Fecha")),
                ("details", models.TextField(blank=True, verbose_name="Detalles")),
                ("author", models.CharField(blank=True, max_length=200, verbose_name="Autor")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="discipline_follow_ups",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "infraction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="follow_ups",
                        to="discipline.infraction",
                        verbose_name="Falta",
                    ),
                ),
            ],
            options={
                "verbose_name": "Seguimiento",
                "verbose_name_plural": "Seguimientos",
                "ordering": ["infraction_id", "number"],
            },
        ),
        migrations.AddConstraint(
            model_name="followup",
            constraint=models.UniqueConstraint(fields=("infraction", "number"), name="discipline_unique_follow_up_number"),
        ),
        migrations.CreateModel(
            name="AlertSetting",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("level", models.CharField(choices=LEVEL_CHOICES, max_length=20, unique=True, verbose_name="Nivel")),
                ("primary_threshold", models.PositiveSmallIntegerField(default=3, verbose_name="Umbral de advertencia")),
                ("secondary_threshold", models.PositiveSmallIntegerField(default=5, verbose_name="Umbral crítico")),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Configuración de alertas",
                "verbose_name_plural": "Configuraciones de alertas",
                "ordering": ["level"],
            },
        ),
    ]
