from django.contrib import admin

from .models import RecordingJob


@admin.register(RecordingJob)
class RecordingJobAdmin(admin.ModelAdmin):
    list_display = (
        "id", "video_filename", "order_number", "remux_status", "remux_attempts",
        "video_duration", "video_size", "remuxed_size", "remuxed_at", "created_at",
    )
    list_filter = ("remux_status", "upload_status")
    search_fields = ("id", "video_key", "video_filename", "order_number")
    ordering = ("-created_at",)
    readonly_fields = (
        "remux_attempts", "remuxed_size", "remuxed_at", "lease_expires_at", "metadata",
        "created_at", "updated_at",
    )
