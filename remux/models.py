import uuid
from django.db import models


class RecordingJob(models.Model):
    """
    One uploaded recording awaiting (or done with) container remuxing.

    Rows are created by the upload-confirmation service; this app only
    mutates the remux_* fields, lease_expires_at and metadata.
    """

    class UploadStatus(models.TextChoices):
        UPLOADING = "uploading"
        COMPLETED = "completed"
        FAILED = "failed"

    class RemuxStatus(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        SKIPPED = "skipped"
        FAILED = "failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    upload_status = models.CharField(
        max_length=16, choices=UploadStatus.choices, default=UploadStatus.COMPLETED, db_column="status"
    )
    order_number = models.CharField(max_length=64, blank=True, default="")
    video_filename = models.CharField(max_length=255, blank=True, default="")
    video_key = models.CharField(max_length=512, db_column="video_url")  # object-store key, overwritten in place
    video_duration = models.FloatField(null=True, blank=True)            # seconds
    video_size = models.BigIntegerField(null=True, blank=True)           # bytes, as uploaded

    remux_status = models.CharField(
        max_length=16, choices=RemuxStatus.choices, default=RemuxStatus.PENDING, db_index=True
    )
    remux_attempts = models.PositiveSmallIntegerField(default=0)
    remuxed_size = models.BigIntegerField(null=True, blank=True)
    remuxed_at = models.DateTimeField(null=True, blank=True)
    lease_expires_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)  # audit trail only, merged on every write

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "packing_records"
        ordering = ["created_at"]
        indexes = [models.Index(fields=["remux_status", "created_at"], name="packing_remux_status_idx")]

    def __str__(self):
        return self.video_filename or self.video_key
