# backend/consultbook/tasks/celery_app.py
"""
Celery application configuration.

Redis is the broker and result backend. The only periodic work is draining
the notification outbox; booking correctness never depends on a worker.
"""

import logging
import os
from typing import Any

from celery import Celery
from celery.signals import setup_logging

from ..core.config import settings

OUTBOX_DISPATCH_INTERVAL_SECONDS = 10.0


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    if not any(broker_url.endswith(f"/{i}") for i in range(16)):
        broker_url = f"{broker_url}/0"

    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery("consultbook", broker=broker_url, backend=result_backend)

    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "worker_prefetch_multiplier": 4,
            "worker_max_tasks_per_child": 1000,
            "task_soft_time_limit": 60,
            "task_time_limit": 120,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 30,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )

    celery_app.conf.imports = ("consultbook.tasks.notification_tasks",)
    celery_app.conf.task_routes = {"outbox.*": {"queue": "notifications"}}
    celery_app.conf.beat_schedule = {
        "dispatch-notification-outbox": {
            "task": "outbox.dispatch_pending",
            "schedule": OUTBOX_DISPATCH_INTERVAL_SECONDS,
        }
    }
    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# Create the Celery app instance
celery_app = create_celery_app()
