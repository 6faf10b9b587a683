import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .utils import format_bytes

logger = logging.getLogger(__name__)


@dataclass
class StatsSnapshot:
    processed: int
    skipped: int
    failed: int
    retried: int
    total_bytes_saved: int
    start_time: datetime
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def runtime_minutes(self) -> int:
        return int((self.taken_at - self.start_time).total_seconds() // 60)


class RemuxStats:
    """
    Process-wide outcome counters. Lives for the life of the worker process;
    nothing is persisted. Jobs of one group report from separate threads,
    hence the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.start_time = datetime.now(timezone.utc)
        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self.retried = 0
        self.total_bytes_saved = 0

    def record_processed(self, saved_bytes: int) -> None:
        with self._lock:
            self.processed += 1
            self.total_bytes_saved += saved_bytes

    def record_skipped(self) -> None:
        with self._lock:
            self.skipped += 1

    def record_failed(self) -> None:
        with self._lock:
            self.failed += 1

    def record_retry(self) -> None:
        with self._lock:
            self.retried += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                processed=self.processed,
                skipped=self.skipped,
                failed=self.failed,
                retried=self.retried,
                total_bytes_saved=self.total_bytes_saved,
                start_time=self.start_time,
            )

    def report(self, log: logging.Logger | None = None) -> StatsSnapshot:
        """Log the statistics block and return the snapshot it was built from."""
        log = log or logger
        snap = self.snapshot()
        direction = "saved" if snap.total_bytes_saved >= 0 else "added"
        log.info("Video processor statistics")
        log.info("  Runtime: %s minutes", snap.runtime_minutes)
        log.info("  Processed: %s videos", snap.processed)
        log.info("  Skipped: %s videos (too short)", snap.skipped)
        log.info("  Failed: %s videos", snap.failed)
        log.info("  Retryable failures: %s attempts", snap.retried)
        log.info("  Total %s: %s", direction, format_bytes(snap.total_bytes_saved))
        return snap


class StatsReporter:
    """
    Logs a statistics report every `interval` seconds from its own daemon
    thread, so the report keeps coming while a cycle occupies the worker.
    """

    def __init__(self, stats: RemuxStats, interval: float, log: logging.Logger | None = None):
        self.stats = stats
        self.interval = interval
        self.log = log
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="remux-stats", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.stats.report(self.log)


# One aggregator per worker process
stats = RemuxStats()
