import logging
import threading

from django.conf import settings

from .dispatch import BatchDispatcher
from .errors import StoreError
from .ffmpeg import FfmpegTranscoder
from .processor import JobOutcome, JobProcessor
from .s3 import S3ObjectStore
from .stats import RemuxStats, stats as process_stats
from .store import DjangoJobStore
from .utils import ensure_scratch_dir

logger = logging.getLogger(__name__)

FFMPEG_INSTALL_HINTS = (
    "Ubuntu/Debian: sudo apt-get install ffmpeg",
    "CentOS/RHEL/Amazon Linux: sudo yum install ffmpeg",
)


class CycleGuard:
    """
    Single-flight guard for discovery cycles: a tick that fires while the
    previous cycle is still dispatching is skipped instead of overlapping it.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_enter(self) -> bool:
        return self._lock.acquire(blocking=False)

    def leave(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


cycle_guard = CycleGuard()


class RemuxPipeline:
    """Discovery + dispatch for one cycle, wired to its collaborators."""

    def __init__(self, store: DjangoJobStore, dispatcher: BatchDispatcher, batch_limit: int = 5,
                 guard: CycleGuard | None = None):
        self.store = store
        self.dispatcher = dispatcher
        self.batch_limit = batch_limit
        self.guard = guard or cycle_guard

    def run_cycle(self) -> list[JobOutcome] | None:
        """
        One discovery+dispatch cycle. Returns the settled outcomes, [] when
        nothing was eligible or the store query failed, and None when the
        tick was skipped because a cycle is already running.
        """
        if not self.guard.try_enter():
            logger.info("Previous remux cycle still running; skipping this tick")
            return None
        try:
            return self._run_cycle()
        finally:
            self.guard.leave()

    def _run_cycle(self) -> list[JobOutcome]:
        logger.info("Checking for videos to process...")
        try:
            expired = self.store.fail_expired_leases()
            if expired:
                logger.warning("Failed %s job(s) whose final attempt lease expired", expired)
            jobs = self.store.fetch_eligible_jobs(self.batch_limit)
        except StoreError as e:
            logger.error("Database query error: %s", e)
            return []

        if not jobs:
            logger.info("No videos found")
            return []

        logger.info("Found %s video(s) to process", len(jobs))
        outcomes = self.dispatcher.dispatch(jobs)
        summary = {}
        for o in outcomes:
            summary[o.outcome.value] = summary.get(o.outcome.value, 0) + 1
        logger.info("Cycle finished: %s", ", ".join(f"{k}={v}" for k, v in sorted(summary.items())))
        return outcomes


def build_pipeline(stats: RemuxStats | None = None) -> RemuxPipeline:
    """Production wiring: Django job store, S3 object store, ffmpeg."""
    store = DjangoJobStore()
    processor = JobProcessor(
        jobs=store,
        objects=S3ObjectStore(),
        transcoder=FfmpegTranscoder(),
        stats=stats or process_stats,
        scratch_dir=settings.REMUX_SCRATCH_DIR,
        max_attempts=settings.REMUX_MAX_ATTEMPTS,
        min_duration=settings.REMUX_MIN_DURATION_SECONDS,
    )
    dispatcher = BatchDispatcher(processor, group_size=settings.REMUX_GROUP_SIZE)
    return RemuxPipeline(store, dispatcher, batch_limit=settings.REMUX_BATCH_LIMIT)


def startup_checks(transcoder: FfmpegTranscoder | None = None) -> str | None:
    """Create the scratch directory and report the ffmpeg build; returns its version line."""
    scratch = ensure_scratch_dir(settings.REMUX_SCRATCH_DIR)
    logger.info("Temp directory ready: %s", scratch)

    version = (transcoder or FfmpegTranscoder()).version()
    if version:
        logger.info("FFmpeg detected: %s", version)
    else:
        logger.warning("FFmpeg not found! Please install FFmpeg on the server.")
        for hint in FFMPEG_INSTALL_HINTS:
            logger.warning("  %s", hint)
    return version

