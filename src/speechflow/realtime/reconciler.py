from __future__ import annotations

from threading import Lock

from speechflow.errors import RecognitionError
from speechflow.types import (
    EndOfUtterance,
    FinalTranscript,
    PartialTranscript,
    RealtimeEvent,
    RecognitionFailed,
    TranscriptSnapshot,
)


class TranscriptReconciler:
    """Folds realtime events into one transcript.

    Confirmed text only grows. The latest partial is kept separately and is
    replaced wholesale by each new partial. Writes happen under a lock so
    readers on other threads always see a consistent snapshot.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._final = ""
        self._partial = ""

    def apply(self, event: RealtimeEvent) -> TranscriptSnapshot:
        if isinstance(event, RecognitionFailed):
            raise RecognitionError(event.reason)

        with self._lock:
            if isinstance(event, PartialTranscript):
                self._partial = event.text.strip()
            elif isinstance(event, FinalTranscript):
                text = event.text.strip()
                if text:
                    self._append(text)
                    self._partial = ""
            elif isinstance(event, EndOfUtterance):
                if self._partial:
                    self._append(self._partial)
                    self._partial = ""
            return TranscriptSnapshot(final_text=self._final, partial_text=self._partial)

    def _append(self, text: str) -> None:
        self._final = f"{self._final} {text}" if self._final else text

    def snapshot(self) -> TranscriptSnapshot:
        with self._lock:
            return TranscriptSnapshot(final_text=self._final, partial_text=self._partial)

    @property
    def text(self) -> str:
        return self.snapshot().text
