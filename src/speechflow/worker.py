from __future__ import annotations

import logging
from threading import Event, Thread

from speechflow.db.transcriptions import TranscriptionsRepository
from speechflow.services.pipeline import BatchTranscriptionService

logger = logging.getLogger(__name__)


class BackgroundWorker:
    def __init__(
        self,
        *,
        transcriptions: TranscriptionsRepository,
        service: BatchTranscriptionService,
        poll_interval_seconds: int,
    ) -> None:
        self.transcriptions = transcriptions
        self.service = service
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_event = Event()
        self._thread = Thread(target=self._run_loop, name="speechflow-worker", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self, timeout_seconds: float = 10.0) -> None:
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=timeout_seconds)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def run_once(self) -> bool:
        record = self.transcriptions.claim_next()
        if record is None:
            return False

        record_id = str(record["id"])
        try:
            logger.info("Processing transcription %s", record_id)
            self.service.process(record_id, claimed=True)
            logger.info("Completed transcription %s", record_id)
        except Exception as exc:  # pylint: disable=broad-except
            # The service has already marked the record failed.
            logger.exception("Transcription %s failed: %s", record_id, str(exc).strip() or "Unknown error")
        return True

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            if not self.run_once():
                self._stop_event.wait(self.poll_interval_seconds)
