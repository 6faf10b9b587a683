"""
Shared fixtures: in-memory fakes for the three ports the job processor talks
to, so state-machine tests run without S3, ffmpeg or a database.
"""
import threading
from pathlib import Path

import pytest

from remux.errors import StoreError, TranscodeError, TransferError
from remux.models import RecordingJob
from remux.processor import JobProcessor
from remux.stats import RemuxStats

Status = RecordingJob.RemuxStatus


class FakeJobStore:
    """Mirrors DjangoJobStore's write semantics on unsaved model instances."""

    def __init__(self):
        self.lose_claim = False
        self.fail_on = set()
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise StoreError(f"{name} exploded")

    def mark_processing(self, job, next_attempt):
        self._check("mark_processing")
        if self.lose_claim:
            return False
        job.remux_status = Status.PROCESSING
        job.remux_attempts = next_attempt
        job.metadata = {**job.metadata, "last_remux_attempt": "now"}
        return True

    def mark_skipped(self, job, notes):
        self._check("mark_skipped")
        job.remux_status = Status.SKIPPED
        job.metadata = {**job.metadata, **notes}

    def mark_completed(self, job, remuxed_size, notes):
        self._check("mark_completed")
        job.remux_status = Status.COMPLETED
        job.remuxed_size = remuxed_size
        job.remuxed_at = "now"
        job.metadata = {**job.metadata, **notes}

    def mark_failed(self, job, reason, notes=None):
        self._check("mark_failed")
        job.remux_status = Status.FAILED
        job.metadata = {**job.metadata, **(notes or {}), "remux_error": reason}

    def mark_retry(self, job, reason):
        self._check("mark_retry")
        job.metadata = {**job.metadata, "last_remux_error": reason}


class FakeObjectStore:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.uploads = []
        self.fail_download = False
        self.fail_upload = False
        self.seen_files = []

    def exists(self, key):
        return len(self.objects.get(key, b"")) > 0

    def download(self, key, dest):
        if self.fail_download:
            raise TransferError(f"Download of {key} failed: boom")
        Path(dest).write_bytes(self.objects[key])
        self.seen_files.append(Path(dest))

    def upload(self, src, key):
        if self.fail_upload:
            raise TransferError(f"Upload of {key} failed: boom")
        self.objects[key] = Path(src).read_bytes()
        self.uploads.append(key)


class FakeTranscoder:
    def __init__(self, duration=45.0, output_size=None, fail=False):
        self.duration = duration
        self.output_size = output_size
        self.fail = fail
        self.probed = []
        self.remuxed = []
        self._lock = threading.Lock()

    def probe_duration(self, path):
        self.probed.append(Path(path))
        return self.duration

    def remux(self, input_path, output_path):
        with self._lock:
            self.remuxed.append(Path(input_path))
        if self.fail:
            raise TranscodeError("FFmpeg failed: Invalid data found when processing input")
        data = Path(input_path).read_bytes()
        size = len(data) // 2 if self.output_size is None else self.output_size
        Path(output_path).write_bytes(b"\x1a" * size)


@pytest.fixture
def make_job():
    def _make(**overrides):
        fields = {
            "upload_status": RecordingJob.UploadStatus.COMPLETED,
            "remux_status": Status.PENDING,
            "remux_attempts": 0,
            "video_key": "recordings/x.webm",
            "video_filename": "x.webm",
            "video_duration": 45.0,
            "video_size": 1000,
            "metadata": {"uploaded_by": "tester"},
        }
        fields.update(overrides)
        return RecordingJob(**fields)

    return _make


@pytest.fixture
def job_store():
    return FakeJobStore()


@pytest.fixture
def object_store():
    return FakeObjectStore({"recordings/x.webm": b"\x00" * 1000})


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def run_stats():
    return RemuxStats()


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def processor(job_store, object_store, transcoder, run_stats, scratch_dir):
    return JobProcessor(job_store, object_store, transcoder, run_stats, scratch_dir, max_attempts=3, min_duration=1.0)
