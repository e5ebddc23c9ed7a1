import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "equipshare.settings.base")
app = Celery("equipshare")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
