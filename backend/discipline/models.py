from __future__ import annotations

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from academic.levels import LEVEL_CHOICES


class Infraction(models.Model):
	class Type(models.TextChoices):
		TYPE_I = "Tipo I", "Tipo I"
		TYPE_II = "Tipo II", "Tipo II"
		TYPE_III = "Tipo III", "Tipo III"

	class Source(models.TextChoices):
		PHIDIAS = "PHIDIAS", "Phidias"
		SUPABASE = "SUPABASE", "Supabase"
		MANUAL = "MANUAL", "Manual"

	# Identidad estable del registro externo: la re-sincronización actualiza, nunca duplica
	hash = models.CharField(max_length=64, unique=True, verbose_name="Hash")
	source = models.CharField(max_length=16, choices=Source.choices, default=Source.PHIDIAS)
	external_id = models.BigIntegerField(null=True, blank=True, db_index=True, verbose_name="Id externo")

	# Sin integridad referencial: los estudiantes se reimportan por separado
	student = models.ForeignKey(
		"students.Student",
		on_delete=models.DO_NOTHING,
		db_constraint=False,
		null=True,
		blank=True,
		related_name="infractions",
		verbose_name="Estudiante",
	)
	student_code = models.CharField(max_length=30, blank=True, db_index=True, verbose_name="Código estudiante")
	school_year = models.ForeignKey(
		"academic.SchoolYear",
		on_delete=models.PROTECT,
		related_name="infractions",
		verbose_name="Año escolar",
	)

	infraction_type = models.CharField(max_length=10, choices=Type.choices, verbose_name="Tipo de falta")
	number = models.PositiveIntegerField(null=True, blank=True, verbose_name="Número de falta")
	description = models.TextField(blank=True, verbose_name="Falta según manual")
	detail = models.TextField(blank=True, verbose_name="Descripción")
	remedial_actions = models.TextField(blank=True, verbose_name="Acciones reparadoras")
	author = models.CharField(max_length=200, blank=True, verbose_name="Autor")

	occurred_at = models.DateTimeField(verbose_name="Fecha de la falta")
	trimester = models.ForeignKey(
		"academic.Trimester",
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="infractions",
		verbose_name="Trimestre",
	)
	trimester_name = models.CharField(max_length=50, blank=True, verbose_name="Nombre del trimestre")
	level = models.CharField(max_length=20, choices=LEVEL_CHOICES, blank=True, verbose_name="Nivel")
	section = models.CharField(max_length=60, blank=True, verbose_name="Sección")

	has_diagnosis = models.BooleanField(default=False, verbose_name="Estudiante con diagnóstico")
	observations = models.TextField(blank=True, verbose_name="Observaciones")
	observations_author = models.CharField(max_length=200, blank=True)
	observations_at = models.DateTimeField(null=True, blank=True)

	external_created_at = models.DateTimeField(null=True, blank=True, verbose_name="Creación en origen")
	external_edited_at = models.DateTimeField(null=True, blank=True, verbose_name="Última edición en origen")

	# Estado local, solo lo modifica la interfaz
	attended = models.BooleanField(default=False, verbose_name="Atendida")
	attended_at = models.DateTimeField(null=True, blank=True)
	attended_by = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="attended_infractions",
	)

	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		ordering = ["-occurred_at", "-id"]
		verbose_name = "Falta"
		verbose_name_plural = "Faltas"
		indexes = [
			models.Index(fields=["school_year", "infraction_type", "level"], name="discipline_infr_type_level_idx"),
			models.Index(fields=["external_edited_at"], name="discipline_infr_edited_idx"),
		]

	def __str__(self) -> str:
		return f"{self.infraction_type} #{self.number or '-'} ({self.hash})"

	def mark_attended(self, *, user=None) -> None:
		if self.attended:
			return
		self.attended = True
		self.attended_at = timezone.now()
		self.attended_by = user
		self.save(update_fields=["attended", "attended_at", "attended_by", "updated_at"])


class FollowUp(models.Model):
	NUMBER_CHOICES = [(1, "Seguimiento 1"), (2, "Seguimiento 2"), (3, "Seguimiento 3")]

	infraction = models.ForeignKey(
		Infraction,
		on_delete=models.CASCADE,
		related_name="follow_ups",
		verbose_name="Falta",
	)
	number = models.PositiveSmallIntegerField(choices=NUMBER_CHOICES, verbose_name="Número de seguimiento")
	date = models.DateField(verbose_name="Fecha")
	details = models.TextField(blank=True, verbose_name="Detalles")
	author = models.CharField(max_length=200, blank=True, verbose_name="Autor")
	created_by = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="discipline_follow_ups",
	)
	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		ordering = ["infraction_id", "number"]
		verbose_name = "Seguimiento"
		verbose_name_plural = "Seguimientos"
		constraints = [
			models.UniqueConstraint(fields=["infraction", "number"], name="discipline_unique_follow_up_number"),
		]

	def __str__(self) -> str:
		return f"Seguimiento {self.number} de {self.infraction.hash}"


class AlertSetting(models.Model):
	level = models.CharField(max_length=20, choices=LEVEL_CHOICES, unique=True, verbose_name="Nivel")
	primary_threshold = models.PositiveSmallIntegerField(default=3, verbose_name="Umbral de advertencia")
	secondary_threshold = models.PositiveSmallIntegerField(default=5, verbose_name="Umbral crítico")
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		ordering = ["level"]
		verbose_name = "Configuración de alertas"
		verbose_name_plural = "Configuraciones de alertas"

	def __str__(self) -> str:
		return f"Alertas {self.level}: {self.primary_threshold}/{self.secondary_threshold}"

	def clean(self):
		if self.secondary_threshold < self.primary_threshold:
			raise ValidationError(
				{"secondary_threshold": "El umbral crítico debe ser mayor o igual al de advertencia."}
			)
