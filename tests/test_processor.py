"""
State machine tests for JobProcessor, driven entirely through in-memory fakes.
"""
import pytest

from remux.models import RecordingJob
from remux.processor import Outcome

Status = RecordingJob.RemuxStatus


def scratch_is_empty(scratch_dir):
    return list(scratch_dir.iterdir()) == []


class TestHappyPath:

    def test_pending_job_completes_in_one_attempt(self, processor, make_job, object_store, scratch_dir):
        job = make_job()
        original = object_store.objects["recordings/x.webm"]

        result = processor.process(job)

        assert result.outcome == Outcome.COMPLETED
        assert job.remux_status == Status.COMPLETED
        assert job.remux_attempts == 1
        assert job.remuxed_at is not None
        assert job.remuxed_size == 500
        assert object_store.uploads == ["recordings/x.webm"]
        assert object_store.objects["recordings/x.webm"] != original
        assert scratch_is_empty(scratch_dir)

    def test_completion_metadata_is_merged(self, processor, make_job):
        job = make_job()
        processor.process(job)

        assert job.metadata["uploaded_by"] == "tester"
        assert job.metadata["original_size"] == 1000
        assert job.metadata["size_saved"] == 500
        assert job.metadata["compression_ratio"] == "50.00"
        assert job.metadata["detected_duration"] == 45.0
        assert "remux_processing_time_ms" in job.metadata
        assert "last_remux_attempt" in job.metadata

    def test_known_duration_is_not_probed(self, processor, make_job, transcoder):
        processor.process(make_job(video_duration=12.5))
        assert transcoder.probed == []

    def test_larger_output_is_still_uploaded(self, processor, make_job, transcoder, object_store, run_stats):
        transcoder.output_size = 1200
        job = make_job()

        result = processor.process(job)

        assert result.outcome == Outcome.COMPLETED
        assert job.remux_status == Status.COMPLETED
        assert job.metadata["size_saved"] == -200
        assert object_store.uploads == ["recordings/x.webm"]
        assert run_stats.total_bytes_saved == -200

    def test_stats_count_processed_and_bytes(self, processor, make_job, run_stats):
        processor.process(make_job())
        processor.process(make_job())
        # second run re-downloads the 500 byte object the first one uploaded
        assert run_stats.processed == 2
        assert run_stats.total_bytes_saved == 500 + 250


class TestShortVideos:

    @pytest.mark.parametrize("duration", [0.4, 1.0])
    def test_known_short_duration_skips_without_claim_or_io(self, processor, make_job, job_store, transcoder,
                                                            object_store, duration):
        job = make_job(video_duration=duration, remux_attempts=1)

        result = processor.process(job)

        assert result.outcome == Outcome.SKIPPED
        assert job.remux_status == Status.SKIPPED
        assert job.remux_attempts == 1
        assert job.metadata["skip_reason"] == "duration_too_short"
        assert "mark_processing" not in job_store.calls
        assert transcoder.remuxed == [] and object_store.seen_files == []

    @pytest.mark.parametrize("probed", [0.0, 0.9, 1.0])
    def test_probed_short_duration_skips_after_download(self, processor, make_job, transcoder, object_store,
                                                        scratch_dir, run_stats, probed):
        transcoder.duration = probed
        job = make_job(video_duration=None)

        result = processor.process(job)

        assert result.outcome == Outcome.SKIPPED
        assert job.remux_status == Status.SKIPPED
        assert job.metadata["detected_duration"] == probed
        assert job.metadata["skip_reason"] == "duration_too_short"
        assert transcoder.remuxed == []
        assert object_store.uploads == []
        assert scratch_is_empty(scratch_dir)
        assert run_stats.skipped == 1

    def test_unknown_duration_probed_long_enough_completes(self, processor, make_job, transcoder):
        transcoder.duration = 8.2
        job = make_job(video_duration=None)

        assert processor.process(job).outcome == Outcome.COMPLETED
        assert job.metadata["detected_duration"] == 8.2
        assert len(transcoder.probed) == 1


class TestMissingObject:

    def test_missing_object_waits_before_cap(self, processor, make_job, object_store, run_stats):
        object_store.objects.clear()
        job = make_job()

        result = processor.process(job)

        assert result.outcome == Outcome.RETRY
        assert job.remux_status == Status.PROCESSING
        assert job.remux_attempts == 1
        assert "not found" in job.metadata["last_remux_error"].lower()
        assert run_stats.retried == 1 and run_stats.failed == 0

    def test_missing_object_three_times_fails(self, processor, make_job, object_store):
        object_store.objects.clear()
        job = make_job()

        outcomes = [processor.process(job).outcome for _ in range(3)]

        assert outcomes == [Outcome.RETRY, Outcome.RETRY, Outcome.FAILED]
        assert job.remux_status == Status.FAILED
        assert job.remux_attempts == 3
        assert "not found" in job.metadata["remux_error"].lower()


class TestFailures:

    def test_transcode_failure_below_cap_is_retryable(self, processor, make_job, transcoder, scratch_dir):
        transcoder.fail = True
        job = make_job()

        for expected_attempt in (1, 2):
            result = processor.process(job)
            assert result.outcome == Outcome.RETRY
            assert job.remux_status != Status.FAILED
            assert job.remux_attempts == expected_attempt
        assert scratch_is_empty(scratch_dir)

    def test_three_transcode_failures_fail_job(self, processor, make_job, transcoder, run_stats, scratch_dir):
        transcoder.fail = True
        job = make_job()

        for _ in range(3):
            result = processor.process(job)

        assert result.outcome == Outcome.FAILED
        assert job.remux_status == Status.FAILED
        assert job.remux_attempts == 3
        assert job.metadata["remux_error"].startswith("FFmpeg failed")
        assert run_stats.failed == 1 and run_stats.retried == 2
        assert scratch_is_empty(scratch_dir)

    def test_upload_failure_leaves_no_scratch_files(self, processor, make_job, object_store, scratch_dir):
        object_store.fail_upload = True
        job = make_job(remux_attempts=2)

        result = processor.process(job)

        assert result.outcome == Outcome.FAILED
        assert "Upload" in job.metadata["remux_error"]
        assert object_store.seen_files and not object_store.seen_files[0].exists()
        assert scratch_is_empty(scratch_dir)

    def test_download_failure_is_retryable(self, processor, make_job, object_store):
        object_store.fail_download = True
        job = make_job()
        assert processor.process(job).outcome == Outcome.RETRY

    def test_unexpected_error_is_contained(self, processor, make_job, transcoder, monkeypatch):
        def explode(*args):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(transcoder, "remux", explode)
        job = make_job(remux_attempts=2)

        result = processor.process(job)

        assert result.outcome == Outcome.FAILED
        assert job.metadata["remux_error"] == "disk on fire"

    def test_exhausted_job_is_failed_without_new_attempt(self, processor, make_job, job_store, object_store):
        job = make_job(remux_attempts=3, remux_status=Status.PROCESSING)

        result = processor.process(job)

        assert result.outcome == Outcome.FAILED
        assert job.remux_attempts == 3
        assert "mark_processing" not in job_store.calls
        assert object_store.seen_files == []


class TestClaim:

    def test_lost_claim_does_no_io(self, processor, make_job, job_store, object_store, transcoder):
        job_store.lose_claim = True

        result = processor.process(make_job())

        assert result.outcome == Outcome.CLAIM_LOST
        assert object_store.seen_files == [] and transcoder.remuxed == []

    def test_store_error_on_claim_is_settled(self, processor, make_job, job_store, object_store):
        job_store.fail_on.add("mark_processing")

        result = processor.process(make_job())

        assert result.outcome == Outcome.STORE_ERROR
        assert object_store.seen_files == []

    def test_store_error_on_completion_counts_as_attempt_failure(self, processor, make_job, job_store):
        job_store.fail_on.add("mark_completed")
        job = make_job()

        result = processor.process(job)

        assert result.outcome == Outcome.RETRY
        assert "mark_completed exploded" in result.error
