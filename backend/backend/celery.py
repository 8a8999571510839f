import os

from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')

app = Celery('backend')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_routes = {
    "auctions.tasks.complete_expired_auctions_task": {"queue": "auctions"},
    "auctions.tasks.requeue_seller_payouts_task": {"queue": "billing"},
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'auctions': {
            'exchange': 'auctions',
            'routing_key': 'auctions',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
    },
)

app.conf.task_annotations = {
    'auctions.tasks.complete_expired_auctions_task': {
        'time_limit': 300,
        'soft_time_limit': 240,
    },
}

app.conf.beat_schedule = {
    "complete_expired_auctions_every_minute": {
        "task": "auctions.tasks.complete_expired_auctions_task",
        "schedule": crontab(minute="*"),
        "options": {"queue": "auctions", "expires": 55},
    },
    "requeue_seller_payouts_hourly": {
        "task": "auctions.tasks.requeue_seller_payouts_task",
        "schedule": crontab(minute=0),
        "options": {"queue": "billing"},
    },
}
