"""Celery application for asynchronous blob placement and sweeping."""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'server.settings')

app = Celery('server')

# All Celery options live in Django settings with the ``CELERY_`` prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
