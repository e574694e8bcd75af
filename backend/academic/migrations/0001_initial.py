import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SchoolYear",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=20, unique=True, verbose_name="Nombre")),
                ("start_date", models.DateField(verbose_name="Fecha Inicio")),
                ("end_date", models.DateField(verbose_name="Fecha Fin")),
                ("is_active", models.BooleanField(default=False, verbose_name="Activo")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Año escolar",
                "verbose_name_plural": "Años escolares",
                "ordering": ["-start_date"],
            },
        ),
        migrations.CreateModel(
            name="Trimester",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=50, verbose_name="Nombre")),
                ("order", models.PositiveSmallIntegerField(default=1, verbose_name="Orden")),
                ("start_date", models.DateField(verbose_name="Fecha Inicio")),
                ("end_date", models.DateField(verbose_name="Fecha Fin")),
                (
                    "school_year",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="trimesters",
                        to="academic.schoolyear",
                        verbose_name="Año escolar",
                    ),
                ),
            ],
            options={
                "verbose_name": "Trimestre",
                "verbose_name_plural": "Trimestres",
                "ordering": ["school_year", "order", "start_date", "id"],
                "indexes": [
                    models.Index(fields=["school_year", "start_date", "end_date"], name="academic_trimester_range_idx"),
                ],
            },
        ),
    ]
