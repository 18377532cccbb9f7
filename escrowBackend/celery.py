"""
Celery Configuration for the escrow backend

Configures Celery for asynchronous notification delivery and the periodic
escrow auto-release scan.
"""

import logging
import os

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown


# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "escrowBackend.settings")

logger = logging.getLogger(__name__)

# Create Celery app
app = Celery("escrowBackend")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Explicitly import our tasks to ensure they're registered
app.autodiscover_tasks(["payment_system.Tasks"])

_release_interval = float(os.getenv("ESCROW_RELEASE_INTERVAL_SECONDS", "300"))

# Celery Beat configuration for periodic tasks
app.conf.beat_schedule = {
    # Release escrows whose holding period has elapsed
    "release-due-escrows": {
        "task": "payment_system.Tasks.escrow_tasks.release_due_escrows_task",
        "schedule": _release_interval,
        "options": {"expires": _release_interval, "queue": "payment_tasks"},
    },
}

# Celery configuration settings
app.conf.update(
    # Task routing - organize tasks by type
    task_routes={
        "payment_system.Tasks.escrow_tasks.*": {"queue": "payment_tasks"},
        "payment_system.Tasks.notification_tasks.*": {"queue": "notification_tasks"},
    },
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=60 * 60 * 24,  # Results expire after 24 hours
    # Worker settings
    worker_max_tasks_per_child=1000,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    # Beat scheduler settings
    beat_scheduler="django_celery_beat.schedulers:DatabaseScheduler",
)


@worker_process_init.connect
def connect_infrastructure(**kwargs):
    """Open the cache client handle for this worker process."""
    from infrastructure.container import container

    container.cache()
    logger.info("Worker process infrastructure connected")


@worker_process_shutdown.connect
def disconnect_infrastructure(**kwargs):
    from infrastructure.container import container

    container.shutdown()
