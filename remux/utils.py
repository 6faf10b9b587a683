from pathlib import Path

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def scratch_paths(scratch_dir: Path, job_id) -> tuple[Path, Path]:
    """Deterministic (input, output) scratch files for a job; reused across retries."""
    base = Path(scratch_dir)
    return base / f"input_{job_id}.webm", base / f"output_{job_id}.webm"


def ensure_scratch_dir(scratch_dir: Path) -> Path:
    path = Path(scratch_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def cleanup(*paths: Path) -> None:
    """Delete scratch files; already-absent files are fine."""
    for p in paths:
        Path(p).unlink(missing_ok=True)


def format_bytes(num) -> str:
    """1536 -> '1.5 KB'. Sign is dropped; callers decide how to word it."""
    if not num:
        return "0 Bytes"
    value = float(abs(num))
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {SIZE_UNITS[i]}"


def compression_ratio(original_size: int, saved_bytes: int) -> str:
    """Saved share of the original size in percent, two decimals ('12.50')."""
    if not original_size:
        return "0.00"
    return f"{saved_bytes / original_size * 100:.2f}"
