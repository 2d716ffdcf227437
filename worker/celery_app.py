import logging

from celery import Celery
from celery.schedules import crontab

from channel_hub.core.config import settings

logging.basicConfig(level=settings.log_level)

celery = Celery(
    "channel-hub-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "worker.tasks.*": {"queue": "discovery"},
    },
    beat_schedule={
        # field vocabularies change rarely; value lists (colours, conditions) more often
        "sync-outdated-fields-monthly": {
            "task": "worker.tasks.sync_outdated_fields",
            "schedule": crontab(minute=0, hour=3, day_of_month=1),
        },
        "sync-outdated-value-lists-daily": {
            "task": "worker.tasks.sync_outdated_value_lists",
            "schedule": crontab(minute=30, hour=3),
        },
    },
)
