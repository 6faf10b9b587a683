import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="RecordingJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "upload_status",
                    models.CharField(
                        choices=[("uploading", "Uploading"), ("completed", "Completed"), ("failed", "Failed")],
                        db_column="status",
                        default="completed",
                        max_length=16,
                    ),
                ),
                ("order_number", models.CharField(blank=True, default="", max_length=64)),
                ("video_filename", models.CharField(blank=True, default="", max_length=255)),
                ("video_key", models.CharField(db_column="video_url", max_length=512)),
                ("video_duration", models.FloatField(blank=True, null=True)),
                ("video_size", models.BigIntegerField(blank=True, null=True)),
                (
                    "remux_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("skipped", "Skipped"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("remux_attempts", models.PositiveSmallIntegerField(default=0)),
                ("remuxed_size", models.BigIntegerField(blank=True, null=True)),
                ("remuxed_at", models.DateTimeField(blank=True, null=True)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "packing_records",
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["remux_status", "created_at"], name="packing_remux_status_idx")],
            },
        ),
    ]
