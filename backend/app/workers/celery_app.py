"""
Celery Application Configuration
Queue-based processing for bulk enrichment and maintenance
"""

from celery import Celery
from kombu import Queue, Exchange

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "crm_enrichment",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.tasks.enrichment_tasks",
        "app.workers.tasks.maintenance_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completion
    task_reject_on_worker_lost=True,
    task_time_limit=3600,  # bulk batches run customers sequentially
    task_soft_time_limit=3300,

    # Worker settings
    worker_prefetch_multiplier=1,  # Fair distribution
    worker_concurrency=2,

    # Queue configuration
    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("enrichment", Exchange("enrichment"), routing_key="enrich"),
        Queue("maintenance", Exchange("maintenance"), routing_key="maintenance"),
    ),

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    # Route tasks to appropriate queues
    task_routes={
        "app.workers.tasks.enrichment_tasks.*": {"queue": "enrichment"},
        "app.workers.tasks.maintenance_tasks.*": {"queue": "maintenance"},
    },

    # Beat scheduler for periodic tasks
    beat_schedule={
        "check-quota-alerts": {
            "task": "app.workers.tasks.maintenance_tasks.check_quota_alerts",
            "schedule": 3600.0,  # Every hour
        },
        "clean-old-screenshots": {
            "task": "app.workers.tasks.maintenance_tasks.clean_old_screenshots",
            "schedule": 86400.0,  # Daily
        },
    },
)
