import logging
import subprocess
from pathlib import Path

from django.conf import settings

from .errors import ProbeAmbiguous, TranscodeError

logger = logging.getLogger(__name__)

# ffmpeg prints this in its final stats line only when muxing finished
SUCCESS_MARKER = "muxing overhead"
EXCERPT_LIMIT = 500


def run_cmd(cmd: list, timeout: float | None = None):
    """Run cmd with stderr folded into stdout; return (returncode, output)."""
    proc = subprocess.run(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        timeout=timeout,
    )
    return proc.returncode, proc.stdout or ""


def build_probe_command(path: Path, ffprobe_bin: str = "ffprobe") -> list[str]:
    return [
        ffprobe_bin,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]


def build_remux_command(input_path: Path, output_path: Path, ffmpeg_bin: str = "ffmpeg") -> list[str]:
    """
    Lossless WebM remux laid out for seeking:
      - stream copy, no re-encode
      - clusters capped at 2 MiB / 5.1 s
      - Cues (the seek index) flagged, with 200k reserved up front for it

    Only options available in ffmpeg 4.x; distro packages still ship it.
    """
    return [
        ffmpeg_bin,
        "-y",
        "-i", str(input_path),
        "-c", "copy",
        "-cluster_size_limit", "2M",
        "-cluster_time_limit", "5100",
        "-metadata:s:v:0", "cues=1",
        "-reserve_index_space", "200k",
        "-f", "webm",
        str(output_path),
    ]


class FfmpegTranscoder:
    """Transcode invoker backed by the ffmpeg / ffprobe command line tools."""

    def __init__(self, ffmpeg_bin: str | None = None, ffprobe_bin: str | None = None, timeout: float | None = None):
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.ffprobe_bin = ffprobe_bin or settings.FFPROBE_BIN
        self.timeout = timeout if timeout is not None else settings.REMUX_FFMPEG_TIMEOUT

    def version(self) -> str | None:
        """First line of `ffmpeg -version`, or None when ffmpeg is unavailable."""
        try:
            code, out = run_cmd([self.ffmpeg_bin, "-version"], timeout=30)
        except (OSError, subprocess.SubprocessError):
            return None
        if code != 0 or not out.strip():
            return None
        return out.splitlines()[0].strip()

    def _probe(self, path: Path) -> float:
        try:
            code, out = run_cmd(build_probe_command(path, self.ffprobe_bin), timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise ProbeAmbiguous(str(e)) from e
        if code != 0:
            raise ProbeAmbiguous(out.strip()[:EXCERPT_LIMIT] or f"ffprobe exited with {code}")
        try:
            return float(out.strip().splitlines()[0])
        except (IndexError, ValueError) as e:
            raise ProbeAmbiguous(f"unparseable duration: {out.strip()[:100]!r}") from e

    def probe_duration(self, path: Path) -> float:
        """
        Duration of `path` in seconds. Any probe failure yields 0.0 so the
        caller routes the job to the too-short skip path instead of crashing.
        """
        try:
            return self._probe(path)
        except ProbeAmbiguous as e:
            logger.warning("Could not detect duration of %s: %s", path, e)
            return 0.0

    def remux(self, input_path: Path, output_path: Path) -> None:
        cmd = build_remux_command(input_path, output_path, self.ffmpeg_bin)
        logger.debug("ffmpeg command: %s", " ".join(cmd))
        try:
            code, out = run_cmd(cmd, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise TranscodeError(f"FFmpeg timed out after {e.timeout}s") from e
        except OSError as e:
            raise TranscodeError(f"FFmpeg could not start: {e}") from e

        # ffmpeg writes warnings even on success; only a non-zero exit without
        # the final stats line is a real failure
        if code != 0 and SUCCESS_MARKER not in out:
            raise TranscodeError(f"FFmpeg failed: {(out or f'exit status {code}')[:EXCERPT_LIMIT]}")
        if code != 0:
            logger.warning("ffmpeg exited with %s but finished muxing; accepting output", code)
