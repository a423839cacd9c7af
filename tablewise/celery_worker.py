"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Run a worker (with the embedded beat scheduler for the offer sweep):
    celery -A tablewise.celery_worker worker -B --loglevel=info
"""

from celery import Celery

from tablewise.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'tablewise_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['tablewise.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,

    # Redis redelivers unacked messages after the visibility timeout; it must
    # outlast the longest offer ETA or expiries run twice
    broker_transport_options={
        'visibility_timeout': max(3600, settings.waitlist_offer_timeout_minutes * 60 * 2),
    },

    # Catch offers whose ETA task was lost or never queued
    beat_schedule={
        'sweep-expired-waitlist-offers': {
            'task': 'tablewise.tasks.sweep_expired_offers',
            'schedule': float(settings.offer_sweep_interval_seconds),
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
