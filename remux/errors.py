"""
Remux pipeline error hierarchy.

None of these escape the per-job boundary; the processor turns them into a
state transition plus a merged metadata note.
"""


class RemuxError(Exception):
    """Base exception for remux pipeline failures."""

    pass


class NotFoundRetryable(RemuxError):
    """Object is not (yet) visible in the object store."""

    pass


class TransferError(RemuxError):
    """Download from or upload to the object store failed."""

    pass


class TranscodeError(RemuxError):
    """ffmpeg reported a genuine remux failure."""

    pass


class ProbeAmbiguous(RemuxError):
    """ffprobe could not report a usable duration."""

    pass


class StoreError(RemuxError):
    """Job store query or update failed."""

    pass
