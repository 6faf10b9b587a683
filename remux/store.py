import logging
from datetime import timedelta

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Avg, Count, ExpressionWrapper, F, FloatField, Q, Sum
from django.utils import timezone

from .errors import StoreError
from .models import RecordingJob

logger = logging.getLogger(__name__)

Status = RecordingJob.RemuxStatus


class DjangoJobStore:
    """
    Job store gateway over the packing_records table.

    Every write merges into the row's current metadata instead of replacing
    it, and refreshes the caller's in-flight copy of the job.
    """

    def __init__(self, max_attempts: int | None = None, min_duration: float | None = None,
                 lease_seconds: int | None = None):
        self.max_attempts = max_attempts or settings.REMUX_MAX_ATTEMPTS
        self.min_duration = settings.REMUX_MIN_DURATION_SECONDS if min_duration is None else min_duration
        self.lease_seconds = settings.REMUX_LEASE_SECONDS if lease_seconds is None else lease_seconds

    # ---------------------------------------------------------------- reads

    def fetch_eligible_jobs(self, limit: int) -> list[RecordingJob]:
        """
        Oldest-first jobs ready for an attempt: upload complete, attempts left,
        longer than the minimum duration, and either pending or holding an
        expired processing lease.
        """
        now = timezone.now()
        claimable = Q(remux_status=Status.PENDING) | Q(remux_status=Status.PROCESSING, lease_expires_at__lt=now)
        qs = (
            RecordingJob.objects
            .filter(claimable)
            .filter(
                upload_status=RecordingJob.UploadStatus.COMPLETED,
                remux_attempts__lt=self.max_attempts,
                video_duration__gt=self.min_duration,
            )
            .order_by("created_at")[:limit]
        )
        try:
            return list(qs)
        except DatabaseError as e:
            raise StoreError(f"Eligible job query failed: {e}") from e

    def summary(self, days: int = 7) -> dict:
        """Counts per remux status, bytes saved and average saving for jobs created in the last `days`."""
        since = timezone.now() - timedelta(days=days)
        qs = RecordingJob.objects.filter(created_at__gt=since)
        try:
            counts = dict(qs.values_list("remux_status").annotate(n=Count("id")).order_by())
            remuxed = qs.filter(remuxed_size__isnull=False, video_size__isnull=False).aggregate(
                saved=Sum(F("video_size") - F("remuxed_size")),
                avg_ratio=Avg(
                    ExpressionWrapper(
                        (F("video_size") - F("remuxed_size")) * 100.0 / F("video_size"),
                        output_field=FloatField(),
                    ),
                    filter=Q(video_size__gt=0),
                ),
            )
        except DatabaseError as e:
            raise StoreError(f"Summary query failed: {e}") from e
        return {
            "counts": {s.value: counts.get(s.value, 0) for s in Status},
            "bytes_saved": remuxed["saved"] or 0,
            # percent of the original size, None until something was remuxed
            "avg_compression_ratio": None if remuxed["avg_ratio"] is None else round(float(remuxed["avg_ratio"]), 2),
        }

    # --------------------------------------------------------------- writes

    def mark_processing(self, job: RecordingJob, next_attempt: int) -> bool:
        """
        Claim the job for one attempt. The update only lands if the row still
        looks the way it did when discovered, so two overlapping cycles cannot
        both claim it. Returns False when the claim was lost.
        """
        now = timezone.now()
        try:
            with transaction.atomic():
                # row stays locked until the update lands
                current = RecordingJob.objects.select_for_update().filter(pk=job.pk).values(
                    "remux_status", "remux_attempts", "lease_expires_at", "metadata"
                ).first()
                if current is None or current["remux_attempts"] != job.remux_attempts:
                    return False
                if current["remux_status"] == Status.PROCESSING:
                    if current["lease_expires_at"] is not None and current["lease_expires_at"] >= now:
                        return False
                elif current["remux_status"] != Status.PENDING:
                    return False

                metadata = {**(current["metadata"] or {}), "last_remux_attempt": now.isoformat()}
                lease = now + timedelta(seconds=self.lease_seconds)
                updated = RecordingJob.objects.filter(
                    pk=job.pk,
                    remux_status=current["remux_status"],
                    remux_attempts=current["remux_attempts"],
                    lease_expires_at=current["lease_expires_at"],
                ).update(
                    remux_status=Status.PROCESSING,
                    remux_attempts=next_attempt,
                    lease_expires_at=lease,
                    metadata=metadata,
                    updated_at=now,
                )
        except DatabaseError as e:
            raise StoreError(f"Claim of job {job.pk} failed: {e}") from e

        if not updated:
            return False
        job.remux_status = Status.PROCESSING
        job.remux_attempts = next_attempt
        job.lease_expires_at = lease
        job.metadata = metadata
        return True

    def mark_skipped(self, job: RecordingJob, notes: dict) -> None:
        self._merge_update(job, {"remux_status": Status.SKIPPED, "lease_expires_at": None}, notes)

    def mark_completed(self, job: RecordingJob, remuxed_size: int, notes: dict) -> None:
        fields = {
            "remux_status": Status.COMPLETED,
            "remuxed_at": timezone.now(),
            "remuxed_size": remuxed_size,
            "lease_expires_at": None,
        }
        self._merge_update(job, fields, notes)

    def mark_failed(self, job: RecordingJob, reason: str, notes: dict | None = None) -> None:
        notes = {**(notes or {}), "remux_error": reason, "failed_at": timezone.now().isoformat()}
        self._merge_update(job, {"remux_status": Status.FAILED, "lease_expires_at": None}, notes)

    def mark_retry(self, job: RecordingJob, reason: str) -> None:
        """Note a retryable error; the job keeps its processing lease until it expires."""
        notes = {"last_remux_error": reason, "last_remux_error_at": timezone.now().isoformat()}
        self._merge_update(job, {}, notes)

    def fail_expired_leases(self) -> int:
        """
        Processing jobs whose final attempt never reported back (worker died)
        are no longer eligible for discovery; fail them so they do not linger.
        """
        now = timezone.now()
        try:
            stuck = list(
                RecordingJob.objects.filter(
                    remux_status=Status.PROCESSING,
                    lease_expires_at__lt=now,
                    remux_attempts__gte=self.max_attempts,
                )
            )
        except DatabaseError as e:
            raise StoreError(f"Expired lease query failed: {e}") from e
        for job in stuck:
            logger.warning("Job %s lease expired after final attempt; marking failed", job.pk)
            self.mark_failed(job, f"Lease expired after {job.remux_attempts} attempts")
        return len(stuck)

    def _merge_update(self, job: RecordingJob, fields: dict, notes: dict) -> None:
        now = timezone.now()
        try:
            with transaction.atomic():
                current = RecordingJob.objects.select_for_update().filter(pk=job.pk).values_list(
                    "metadata", flat=True
                ).first()
                metadata = {**(current or job.metadata or {}), **notes}
                RecordingJob.objects.filter(pk=job.pk).update(**fields, metadata=metadata, updated_at=now)
        except DatabaseError as e:
            raise StoreError(f"Update of job {job.pk} failed: {e}") from e

        for name, value in fields.items():
            setattr(job, name, value)
        job.metadata = metadata
