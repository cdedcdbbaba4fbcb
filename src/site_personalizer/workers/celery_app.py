"""Celery application for Site Personalizer.

Configures the broker, result backend, serialization and task routing.  All
configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A site_personalizer.workers.celery_app worker -Q exports --loglevel=info

Usage (within application code)::

    from site_personalizer.workers.export_tasks import process_export_task

    process_export_task.delay(str(job_id))
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_postrun, worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env values into os.environ before settings are read.
load_dotenv()

from site_personalizer.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "site_personalizer",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "site_personalizer.workers.export_tasks",
    ],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # JSON only: task arguments and return values must be JSON-serializable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    # Acknowledge after the task finishes so a worker crash does not lose it.
    task_acks_late=True,
    # Exports are long-running; one at a time per worker process.
    worker_prefetch_multiplier=1,
    # Keep results for 24 hours.
    result_expires=86_400,
    task_soft_time_limit=3_600,
    task_time_limit=7_200,
    task_routes={
        "site_personalizer.workers.export_tasks.*": {"queue": "exports"},
    },
)


@after_setup_logger.connect
def _configure_worker_logging(**kwargs: object) -> None:  # noqa: ARG001
    """Route worker log records through the structlog JSON pipeline."""
    from site_personalizer.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(settings.log_level)


# ---------------------------------------------------------------------------
# Engine disposal on fork
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _dispose_engine_on_fork(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the async engine's pool after Celery forks a worker process.

    Pooled asyncpg connections are tied to the parent's event loop and
    cannot be reused in the child.
    """
    from site_personalizer.core import database as _db  # noqa: PLC0415

    _db.async_engine.sync_engine.dispose(close=False)


# ---------------------------------------------------------------------------
# Engine disposal after each task
# ---------------------------------------------------------------------------
@task_postrun.connect
def _dispose_async_engine_after_task(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the async engine's connection pool after each task completes.

    Each task runs its own ``asyncio.run()`` loop; connections left in the
    pool would be bound to a loop that no longer exists when the next task
    starts.
    """
    try:
        from site_personalizer.core import database as _db  # noqa: PLC0415

        _db.async_engine.sync_engine.dispose(close=False)
    except Exception:  # noqa: BLE001
        _logger.warning("celery: engine disposal after task failed", exc_info=True)
