import os
from celery import Celery
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "campershare.settings.base")
app = Celery("campershare")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
