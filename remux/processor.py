"""
Per-job remux state machine.

    pending --(known duration <= min)--------------------------> skipped
    pending --claim--> processing --exists? no--> (wait | failed at cap)
                                  --download--> probe? --(<= min)--> skipped
                                  --remux--> upload --> completed
    any step error --> processing (retry after lease) | failed at cap

The processor talks to three narrow ports (job store, object store,
transcoder) so it can run against in-memory fakes.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from django.utils import timezone

from .errors import NotFoundRetryable, RemuxError, StoreError
from .stats import RemuxStats
from .utils import cleanup, compression_ratio, ensure_scratch_dir, format_bytes, scratch_paths

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def mark_processing(self, job, next_attempt: int) -> bool: ...
    def mark_skipped(self, job, notes: dict) -> None: ...
    def mark_completed(self, job, remuxed_size: int, notes: dict) -> None: ...
    def mark_failed(self, job, reason: str, notes: dict | None = None) -> None: ...
    def mark_retry(self, job, reason: str) -> None: ...


class ObjectStore(Protocol):
    def exists(self, key: str) -> bool: ...
    def download(self, key: str, dest: Path) -> None: ...
    def upload(self, src: Path, key: str) -> None: ...


class Transcoder(Protocol):
    def probe_duration(self, path: Path) -> float: ...
    def remux(self, input_path: Path, output_path: Path) -> None: ...


class Outcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    RETRY = "retry"            # left in processing for a later cycle
    CLAIM_LOST = "claim_lost"  # another cycle claimed the job first
    STORE_ERROR = "store_error"
    ERROR = "error"            # escaped the processor boundary


@dataclass
class JobOutcome:
    job_id: str
    outcome: Outcome
    attempt: int
    error: str | None = None
    saved_bytes: int | None = None


class JobProcessor:

    def __init__(self, jobs: JobStore, objects: ObjectStore, transcoder: Transcoder, stats: RemuxStats,
                 scratch_dir: Path, max_attempts: int = 3, min_duration: float = 1.0):
        self.jobs = jobs
        self.objects = objects
        self.transcoder = transcoder
        self.stats = stats
        self.scratch_dir = Path(scratch_dir)
        self.max_attempts = max_attempts
        self.min_duration = min_duration

    def process(self, job) -> JobOutcome:
        """Run one attempt for `job`. Never raises; the result is always settled."""
        job_id = str(job.pk)
        attempt = (job.remux_attempts or 0) + 1

        logger.info(
            "Processing %s (job %s) | order %s | size %s | duration %ss | attempt %s/%s",
            job.video_filename or job.video_key, job_id, job.order_number or "N/A",
            format_bytes(job.video_size), job.video_duration, attempt, self.max_attempts,
        )

        try:
            if job.video_duration and job.video_duration <= self.min_duration:
                logger.info("Job %s: skipping, video too short (%ss)", job_id, job.video_duration)
                self.jobs.mark_skipped(job, {
                    "skip_reason": "duration_too_short",
                    "skipped_at": timezone.now().isoformat(),
                })
                self.stats.record_skipped()
                return JobOutcome(job_id, Outcome.SKIPPED, job.remux_attempts)

            if attempt > self.max_attempts:
                logger.error("Job %s: attempt limit reached, marking failed", job_id)
                self.jobs.mark_failed(job, f"Attempt limit of {self.max_attempts} reached")
                self.stats.record_failed()
                return JobOutcome(job_id, Outcome.FAILED, job.remux_attempts)

            if not self.jobs.mark_processing(job, attempt):
                logger.info("Job %s: already claimed elsewhere, leaving it alone", job_id)
                return JobOutcome(job_id, Outcome.CLAIM_LOST, attempt)
        except StoreError as e:
            logger.error("Job %s: could not record state before processing: %s", job_id, e)
            return JobOutcome(job_id, Outcome.STORE_ERROR, attempt, error=str(e))

        input_path, output_path = scratch_paths(self.scratch_dir, job_id)
        try:
            return self._attempt(job, job_id, attempt, input_path, output_path)
        except Exception as e:
            return self._handle_failure(job, job_id, attempt, e)
        finally:
            cleanup(input_path, output_path)

    def _attempt(self, job, job_id: str, attempt: int, input_path: Path, output_path: Path) -> JobOutcome:
        if not self.objects.exists(job.video_key):
            logger.info("Job %s: %s not in object store yet", job_id, job.video_key)
            raise NotFoundRetryable(f"File not found after {attempt} attempts")

        started = time.monotonic()
        ensure_scratch_dir(self.scratch_dir)
        self.objects.download(job.video_key, input_path)
        original_size = input_path.stat().st_size
        logger.info("Job %s: downloaded %s", job_id, format_bytes(original_size))

        duration = job.video_duration
        if not duration:
            duration = self.transcoder.probe_duration(input_path)
            logger.info("Job %s: detected duration %ss", job_id, duration)
            if duration <= self.min_duration:
                logger.info("Job %s: skipping, video too short (%ss)", job_id, duration)
                self.jobs.mark_skipped(job, {
                    "skip_reason": "duration_too_short",
                    "detected_duration": duration,
                    "skipped_at": timezone.now().isoformat(),
                })
                self.stats.record_skipped()
                return JobOutcome(job_id, Outcome.SKIPPED, attempt)

        self.transcoder.remux(input_path, output_path)
        remuxed_size = output_path.stat().st_size
        saved = original_size - remuxed_size
        ratio = compression_ratio(original_size, saved)
        logger.info(
            "Job %s: remuxed to %s (%s %s, %s%%)", job_id, format_bytes(remuxed_size),
            "saved" if saved >= 0 else "grew by", format_bytes(saved), ratio.lstrip("-"),
        )
        if saved < 0:
            logger.info("Job %s: size increased but seeking will be improved", job_id)

        self.objects.upload(output_path, job.video_key)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.jobs.mark_completed(job, remuxed_size, {
            "remux_processing_time_ms": elapsed_ms,
            "original_size": original_size,
            "size_saved": saved,
            "compression_ratio": ratio,
            "detected_duration": duration,
        })
        self.stats.record_processed(saved)
        logger.info("Job %s: done in %.2fs", job_id, elapsed_ms / 1000)
        return JobOutcome(job_id, Outcome.COMPLETED, attempt, saved_bytes=saved)

    def _handle_failure(self, job, job_id: str, attempt: int, error: Exception) -> JobOutcome:
        reason = str(error) or error.__class__.__name__
        unexpected = not isinstance(error, RemuxError)
        if attempt < self.max_attempts:
            logger.warning("Job %s: attempt %s/%s failed, will retry: %s", job_id, attempt, self.max_attempts, reason,
                           exc_info=unexpected)
            self.stats.record_retry()
            try:
                self.jobs.mark_retry(job, reason)
            except StoreError as e:
                logger.error("Job %s: could not record retryable error: %s", job_id, e)
            return JobOutcome(job_id, Outcome.RETRY, attempt, error=reason)

        logger.error("Job %s: giving up after %s attempts: %s", job_id, attempt, reason, exc_info=unexpected)
        self.stats.record_failed()
        try:
            self.jobs.mark_failed(job, reason)
        except StoreError as e:
            logger.error("Job %s: could not record failure: %s", job_id, e)
        return JobOutcome(job_id, Outcome.FAILED, attempt, error=reason)
