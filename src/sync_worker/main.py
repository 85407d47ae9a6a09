"""Celery application for the catalog sync worker."""

from celery import Celery
from celery.schedules import crontab

from catalog_sync.config import Settings, get_settings
from catalog_sync.log_config import configure_logging

settings = get_settings()
configure_logging(settings)


def sync_schedule(settings: Settings) -> crontab:
    """Crontab for the automatic sync at the configured frequency."""
    hour, _, minute = settings.auto_sync_daily_time.partition(":")
    hour, minute = int(hour or 0), int(minute or 0)
    if settings.auto_sync_frequency == "minutely":
        return crontab()
    if settings.auto_sync_frequency == "hourly":
        return crontab(minute=0)
    if settings.auto_sync_frequency == "twicedaily":
        return crontab(minute=minute, hour=f"{hour},{(hour + 12) % 24}")
    if settings.auto_sync_frequency == "weekly":
        return crontab(minute=minute, hour=hour, day_of_week=1)
    return crontab(minute=minute, hour=hour)


# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.sync_products",
        "sync_worker.tasks.background",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes
    task_soft_time_limit=540,  # 9 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Automatic sync; the task itself checks auto_sync_enabled
    "scheduled-sync": {
        "task": "sync_worker.tasks.sync_products.run_scheduled_sync",
        "schedule": sync_schedule(settings),
    },
    # Fire due health-checks and single-item fallbacks
    "run-due-actions": {
        "task": "sync_worker.tasks.background.run_due_actions",
        "schedule": crontab(),
    },
    # Retention sweep daily at 3 AM
    "purge-sync-history": {
        "task": "sync_worker.tasks.sync_products.purge_sync_history",
        "schedule": crontab(minute=0, hour=3),
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
