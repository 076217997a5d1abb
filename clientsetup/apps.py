from django.apps import AppConfig


class ClientsetupConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "clientsetup"
