from django.apps import AppConfig


class DisciplineConfig(AppConfig):
	default_auto_field = "django.db.models.BigAutoField"
	name = "discipline"
	verbose_name = "Convivencia"
