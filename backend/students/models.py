from django.db import models

from academic.levels import level_for_student


class Student(models.Model):
    school_year = models.ForeignKey(
        "academic.SchoolYear",
        on_delete=models.PROTECT,
        related_name="students",
        verbose_name="Año escolar",
    )
    # Identificador de la persona en Phidias
    code = models.CharField(max_length=30, verbose_name="Código")
    first_name = models.CharField(max_length=150, blank=True, verbose_name="Nombres")
    last_name = models.CharField(max_length=150, blank=True, verbose_name="Apellidos")
    grade = models.CharField(max_length=60, blank=True, verbose_name="Grado")
    section = models.CharField(max_length=60, blank=True, verbose_name="Sección")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["last_name", "first_name", "id"]
        verbose_name = "Estudiante"
        verbose_name_plural = "Estudiantes"
        constraints = [
            models.UniqueConstraint(fields=["school_year", "code"], name="students_unique_code_per_year"),
        ]

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    @property
    def level(self) -> str:
        return level_for_student(self.grade, self.section)

    def __str__(self) -> str:
        return f"{self.full_name or self.code} ({self.grade or 'sin grado'})"
