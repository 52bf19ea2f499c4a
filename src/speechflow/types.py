from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

TranscriptionStatus = Literal["pending", "processing", "completed", "failed"]
TranscriptionSource = Literal["batch", "realtime"]
SessionStatus = Literal["idle", "connecting", "recording", "stopping", "stopped"]

FAILED_JOB_STATUSES = ("error", "rejected")


@dataclass(slots=True)
class ResolvedAudio:
    data: bytes
    content_type: str
    filename: str = "audio.mp3"


@dataclass(slots=True)
class TranscriptionJob:
    job_id: str
    audio_ref: str = ""
    language: str = ""
    status: str = "running"


@dataclass(frozen=True, slots=True)
class TranscriptSnapshot:
    final_text: str
    partial_text: str

    @property
    def text(self) -> str:
        if not self.partial_text:
            return self.final_text
        if not self.final_text:
            return self.partial_text
        return f"{self.final_text} {self.partial_text}"


# Realtime events, decoded once at the websocket boundary.


@dataclass(frozen=True, slots=True)
class Started:
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class PartialTranscript:
    text: str


@dataclass(frozen=True, slots=True)
class FinalTranscript:
    text: str


@dataclass(frozen=True, slots=True)
class EndOfUtterance:
    pass


@dataclass(frozen=True, slots=True)
class RecognitionFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class Closed:
    pass


RealtimeEvent = Union[Started, PartialTranscript, FinalTranscript, EndOfUtterance, RecognitionFailed, Closed]
