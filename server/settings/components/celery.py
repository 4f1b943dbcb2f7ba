"""Celery settings: placement workers and the periodic sweeper."""

from server.settings.components import config
from server.settings.components.files import STORAGE_SWEEP_INTERVAL_SECONDS

CELERY_BROKER_URL = config(
    'CELERY_BROKER_URL',
    default='redis://localhost:6379/0',
)
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default=None)

CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = 'UTC'

# One message per worker process at a time; a message is acknowledged
# only after the task body ran, so a warm shutdown drains in-flight work.
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_TASK_ACKS_LATE = True

CELERY_TASK_ALWAYS_EAGER = config(
    'CELERY_TASK_ALWAYS_EAGER',
    cast=bool,
    default=False,
)

CELERY_BEAT_SCHEDULE = {
    'sweep-storage': {
        'task': 'files.sweep_storage',
        'schedule': float(STORAGE_SWEEP_INTERVAL_SECONDS),
    },
}
