"""
Celery entry points for the remux worker.

Run a single worker process with the beat scheduler embedded, e.g.

    celery -A remux_service worker -B --pool=solo -l info

Beat fires `run_remux_cycle` every REMUX_INTERVAL_SECONDS. The solo pool runs
one task at a time, so ticks that fire during a long cycle wait in the queue;
each tick expires after one interval and stale ones are discarded instead of
running back to back. One cycle is also queued as soon as the worker is ready.

The statistics report is not a task: it runs on its own thread every
REMUX_STATS_INTERVAL_SECONDS, so a long or hung cycle cannot hold it up.
"""
from functools import lru_cache

from celery import shared_task
from celery.exceptions import WorkerTerminate
from celery.signals import worker_ready, worker_shutdown
from celery.utils.log import get_task_logger
from django.conf import settings

from .scheduler import RemuxPipeline, build_pipeline, startup_checks
from .stats import StatsReporter, stats

logger = get_task_logger(__name__)


@lru_cache(maxsize=1)
def get_pipeline() -> RemuxPipeline:
    return build_pipeline(stats)


@lru_cache(maxsize=1)
def get_reporter() -> StatsReporter:
    return StatsReporter(stats, settings.REMUX_STATS_INTERVAL_SECONDS, logger)


@shared_task(name="remux.tasks.run_remux_cycle", ignore_result=True)
def run_remux_cycle():
    outcomes = get_pipeline().run_cycle()
    if outcomes is None:
        return None
    return [{"job_id": o.job_id, "outcome": o.outcome.value, "attempt": o.attempt} for o in outcomes]


@worker_ready.connect
def on_worker_ready(sender=None, **kwargs):
    logger.info("Video processor started; checking every %ss for new videos", settings.REMUX_INTERVAL_SECONDS)
    try:
        startup_checks()
        get_pipeline()
    except Exception:
        logger.exception("Video processor setup failed")
        stats.report(logger)
        raise WorkerTerminate(1)
    get_reporter().start()
    run_remux_cycle.delay()


@worker_shutdown.connect
def on_worker_shutdown(sender=None, **kwargs):
    logger.info("Shutting down video processor...")
    get_reporter().stop()
    stats.report(logger)
