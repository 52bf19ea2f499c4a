from __future__ import annotations


class SpeechflowError(Exception):
    """Base class for transcription acquisition failures."""


class ConfigurationError(SpeechflowError):
    """A credential or required setting is missing."""


class ProviderUnavailable(SpeechflowError):
    """The provider could not be reached."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Network error contacting Speechmatics during {operation}{detail}")


class ProviderRejected(SpeechflowError):
    """The provider answered with a non-2xx response."""

    def __init__(self, operation: str, status_code: int, body: str) -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"Speechmatics {operation} failed ({status_code}): {body[:400]}")


class TranscriptUnavailable(SpeechflowError):
    """The finished job did not expose a usable result set."""

    def __init__(self, job_id: str, reason: str = "No transcript results found") -> None:
        self.job_id = job_id
        super().__init__(f"{reason} for job {job_id}")


class TranscriptionFailed(SpeechflowError):
    """The job reached a failed terminal state."""

    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Transcription failed with status: {status}")


class TranscriptionTimeout(SpeechflowError):
    """The poll budget ran out before the job finished."""

    def __init__(self, job_id: str, attempts: int) -> None:
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Transcription timeout - job {job_id} not done after {attempts} attempts")


class RealtimeConnectionError(SpeechflowError, ConnectionError):
    """The realtime handshake or transport failed."""


class RecognitionError(SpeechflowError):
    """The realtime provider reported an error on the stream."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Speechmatics error: {reason}")
