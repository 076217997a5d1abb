from django.apps import AppConfig


class CostsheetConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "costsheet"
