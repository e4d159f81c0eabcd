"""
Celery worker for the reward ledger.

Start worker:    celery -A alumni_rewards.worker worker --loglevel=info
Start beat:      celery -A alumni_rewards.worker beat --loglevel=info
Start both:      celery -A alumni_rewards.worker worker --beat --loglevel=info
"""
from celery import Celery
from celery.schedules import crontab

from alumni_rewards.core.celery_config import (
    CELERY_QUEUES,
    CELERY_TASK_ANNOTATIONS,
    CELERY_TASK_ROUTES,
)
from alumni_rewards.core.config import settings
from alumni_rewards.core.sentry import init_sentry

celery_app = Celery(
    "alumni_rewards_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "alumni_rewards.modules.ledger.tasks",
    ],
)

init_sentry(
    dsn=settings.SENTRY_DSN,
    environment=settings.SENTRY_ENVIRONMENT,
    release=settings.APP_VERSION,
    component="worker",
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24h
    task_queues=CELERY_QUEUES,
    task_default_queue="ledger",
    task_routes=CELERY_TASK_ROUTES,
    task_annotations=CELERY_TASK_ANNOTATIONS,
)

celery_app.conf.beat_schedule = {
    "expire-reward-activities": {
        "task": "tasks.expire_reward_activities",
        "schedule": crontab(minute=5),  # every hour at :05
    },
}
