from django.apps import AppConfig


class RemuxConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "remux"
    verbose_name = "Recording remux"
