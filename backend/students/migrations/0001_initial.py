import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("academic", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Student",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=30, verbose_name="Código")),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="Nombres")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="Apellidos")),
                ("grade", models.CharField(blank=True, max_length=60, verbose_name="Grado")),
                ("section", models.CharField(blank=True, max_length=60, verbose_name="Sección")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "school_year",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="students",
                        to="academic.schoolyear",
                        verbose_name="Año escolar",
                    ),
                ),
            ],
            options={
                "verbose_name": "Estudiante",
                "verbose_name_plural": "Estudiantes",
                "ordering": ["last_name", "first_name", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="student",
            constraint=models.UniqueConstraint(fields=("school_year", "code"), name="students_unique_code_per_year"),
        ),
    ]
