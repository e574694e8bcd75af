from django.core.exceptions import ValidationError
from django.db import models


class SchoolYear(models.Model):
    name = models.CharField(max_length=20, unique=True, verbose_name="Nombre")
    start_date = models.DateField(verbose_name="Fecha Inicio")
    end_date = models.DateField(verbose_name="Fecha Fin")
    is_active = models.BooleanField(default=False, verbose_name="Activo")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_date"]
        verbose_name = "Año escolar"
        verbose_name_plural = "Años escolares"

    def __str__(self) -> str:
        return f"{self.name}{' (activo)' if self.is_active else ''}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "La fecha de fin debe ser posterior a la de inicio."})

    def save(self, *args, **kwargs):
        if self.is_active:
            # Solo un año escolar activo a la vez
            SchoolYear.objects.filter(is_active=True).exclude(pk=self.pk).update(is_active=False)
        super().save(*args, **kwargs)


class Trimester(models.Model):
    school_year = models.ForeignKey(
        SchoolYear, related_name="trimesters", on_delete=models.CASCADE, verbose_name="Año escolar"
    )
    name = models.CharField(max_length=50, verbose_name="Nombre")
    order = models.PositiveSmallIntegerField(default=1, verbose_name="Orden")
    start_date = models.DateField(verbose_name="Fecha Inicio")
    end_date = models.DateField(verbose_name="Fecha Fin")

    class Meta:
        ordering = ["school_year", "order", "start_date", "id"]
        verbose_name = "Trimestre"
        verbose_name_plural = "Trimestres"
        indexes = [
            models.Index(fields=["school_year", "start_date", "end_date"], name="academic_trimester_range_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.school_year.name})"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "La fecha de fin debe ser posterior a la de inicio."})
