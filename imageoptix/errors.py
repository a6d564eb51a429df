"""Error taxonomy shared by the submission layer and the job runner."""

from typing import Optional


class OptixError(Exception):
    """Base class for all service errors."""


class SubmissionValidationError(OptixError):
    """Malformed settings, empty batch or oversized batch. No job is created."""


class AdmissionError(OptixError):
    """Caller exceeded the submission rate limit. No job is created."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TranscodeError(OptixError):
    """An image could not be decoded, resized or re-encoded."""


class TerminalActionError(OptixError):
    """The final archive or upload step of a job failed."""


class ArchiveError(TerminalActionError):
    pass


class UploadError(TerminalActionError):
    pass
