from django.apps import AppConfig


class PhidiasConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "phidias"
    verbose_name = "Sincronización Phidias"
