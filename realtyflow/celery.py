# realtyflow/celery.py
import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "realtyflow.settings")

app = Celery("realtyflow")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks(["common"])
