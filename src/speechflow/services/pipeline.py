from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from speechflow.db.transcriptions import TranscriptionsRepository
from speechflow.services.batch_client import BatchJobClient
from speechflow.services.poller import BatchPoller
from speechflow.services.storage import StorageService
from speechflow.types import TranscriptionJob

logger = logging.getLogger(__name__)


class TranscriptionAlreadyProcessed(ValueError):
    def __init__(self, record_id: str, status: str) -> None:
        self.record_id = record_id
        self.status = status
        super().__init__(f"Transcription {record_id} has already been processed (status={status})")


class BatchTranscriptionService:
    """Runs the batch pipeline for one stored transcription record."""

    def __init__(
        self,
        *,
        transcriptions: TranscriptionsRepository,
        client: BatchJobClient,
        poller: BatchPoller,
        storage: StorageService | None = None,
    ) -> None:
        self.transcriptions = transcriptions
        self.client = client
        self.poller = poller
        self.storage = storage

    def process(self, record_id: str, *, claimed: bool = False) -> dict[str, Any]:
        record = self.transcriptions.get(record_id)
        if record is None:
            raise LookupError(f"Transcription {record_id} not found")

        if not claimed and not self.transcriptions.mark_processing(record_id):
            raise TranscriptionAlreadyProcessed(record_id, str(record["status"]))

        metadata = dict(record.get("metadata") or {})
        try:
            audio_ref = str(record["audio_ref"])
            language = str(record["language"] or "es")
            job = TranscriptionJob(self.client.submit(audio_ref, language), audio_ref, language)
            self.transcriptions.set_provider_job(record_id, job.job_id)
            logger.info("Transcription %s submitted as job %s", record_id, job.job_id)
            text = self.poller.poll(job)

            result_path = None
            if self.storage is not None:
                exported = self.storage.export_transcript(record, text)
                result_path = exported["path"]
            metadata["processingTime"] = _elapsed_ms(record)
            self.transcriptions.mark_completed(record_id, text, metadata, result_path=result_path)
        except Exception as exc:
            metadata["processingTime"] = _elapsed_ms(record)
            self.transcriptions.mark_failed(record_id, str(exc).strip() or "Unknown error", metadata)
            raise

        updated = self.transcriptions.get(record_id)
        if updated is None:
            raise RuntimeError(f"Transcription {record_id} disappeared")
        return updated


def _elapsed_ms(record: dict[str, Any]) -> int:
    created = str(record.get("created_at") or "")
    try:
        started = datetime.fromisoformat(created.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return max(0, int((datetime.now(timezone.utc) - started).total_seconds() * 1000))


def save_realtime_transcript(
    transcriptions: TranscriptionsRepository,
    storage: StorageService,
    transcript_text: str,
    language: str = "es",
) -> dict[str, Any]:
    record = transcriptions.create_realtime(transcript_text, language)
    record_id = str(record["id"])
    text = str(record["transcript_text"])
    exported = storage.export_transcript(record, text)
    transcriptions.mark_completed(record_id, text, dict(record["metadata"]), result_path=exported["path"])
    logger.info("Saved realtime transcription %s (%d chars)", record_id, len(text))
    return transcriptions.get(record_id) or record
