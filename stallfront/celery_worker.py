"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

In development the tasks run inline (``task_always_eager``) so no worker
or broker is needed.
"""

from celery import Celery

from stallfront.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stallfront_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["stallfront.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    result_expires=3600,  # seconds

    task_acks_late=True,  # acknowledge after completion
    task_reject_on_worker_lost=True,

    task_always_eager=settings.run_tasks_eagerly,
    task_eager_propagates=False,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
