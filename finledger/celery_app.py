"""
FinLedger - Celery Configuration

Celery configuration for background reconciliation.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from finledger.config import settings


# Create Celery app
celery_app = Celery(
    'finledger',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['finledger.tasks.reconciliation_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=3600,  # 1 hour; a full run touches every owner
    task_soft_time_limit=3300,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=30,
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Nightly balance reconciliation
        'reconcile-all-balances': {
            'task': 'finledger.tasks.reconciliation_tasks.reconcile_all_balances_task',
            'schedule': crontab(
                hour=settings.reconciliation_schedule_hour,
                minute=settings.reconciliation_schedule_minute,
            ),
        },
    },
)


celery_app.conf.task_routes = {
    'finledger.tasks.reconciliation_tasks.*': {'queue': 'reconciliation'},
}
