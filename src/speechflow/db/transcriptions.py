from __future__ import annotations

import json
import time
import uuid
from datetime import datetime
from typing import Any

from speechflow.db.database import Database
from speechflow.types import TranscriptionSource, TranscriptionStatus

NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"
MAX_REALTIME_CHARS = 10000


def _decode(row: Any) -> dict[str, Any]:
    record = dict(row)
    try:
        record["metadata"] = json.loads(record.get("metadata") or "{}")
    except json.JSONDecodeError:
        record["metadata"] = {}
    return record


class TranscriptionsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        *,
        filename: str,
        audio_ref: str,
        file_size: int,
        language: str = "es",
        source: TranscriptionSource = "batch",
        status: TranscriptionStatus = "pending",
        transcript_text: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        record_id = str(uuid.uuid4())
        completed_at = NOW if status == "completed" else "NULL"
        with self.db.lock:
            self.db.conn.execute(
                f"""
                INSERT INTO transcriptions(
                    id, filename, audio_ref, source, status, language, file_size,
                    transcript_text, metadata, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, {completed_at})
                """,
                (
                    record_id,
                    filename,
                    audio_ref,
                    source,
                    status,
                    language,
                    file_size,
                    transcript_text,
                    json.dumps(metadata or {}),
                ),
            )
            if transcript_text:
                self._index(record_id, filename, transcript_text)
            self.db.conn.commit()

        record = self.get(record_id)
        if record is None:
            raise RuntimeError("Failed to create transcription")
        return record

    def create_realtime(self, transcript_text: str, language: str = "es") -> dict[str, Any]:
        if not isinstance(transcript_text, str) or not transcript_text.strip():
            raise ValueError("transcriptText cannot be empty")
        if len(transcript_text) > MAX_REALTIME_CHARS:
            raise ValueError(f"transcriptText cannot exceed {MAX_REALTIME_CHARS} characters")

        text = transcript_text.strip()
        now = datetime.now()
        return self.create(
            filename=f"realtime_{int(time.time() * 1000)}.txt",
            audio_ref="realtime://transcription",
            file_size=len(text),
            language=language or "es",
            source="realtime",
            status="completed",
            transcript_text=text,
            metadata={
                "originalName": f"Realtime transcription - {now:%Y-%m-%d}",
                "mimeType": "text/plain",
                "type": "realtime",
                "processingTime": 0,
            },
        )

    def get(self, record_id: str) -> dict[str, Any] | None:
        row = self.db.conn.execute("SELECT * FROM transcriptions WHERE id = ?", (record_id,)).fetchone()
        return _decode(row) if row is not None else None

    def claim_next(self) -> dict[str, Any] | None:
        with self.db.lock:
            self.db.conn.execute("BEGIN IMMEDIATE")
            row = self.db.conn.execute(
                """
                SELECT id FROM transcriptions
                WHERE status = 'pending' AND source = 'batch'
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1
                """
            ).fetchone()
            if row is None:
                self.db.conn.commit()
                return None

            record_id = row["id"]
            self.db.conn.execute(
                f"UPDATE transcriptions SET status = 'processing', updated_at = {NOW} WHERE id = ?",
                (record_id,),
            )
            self.db.conn.commit()

        return self.get(str(record_id))

    def mark_processing(self, record_id: str) -> bool:
        """Move a pending record to processing; False if it was not pending."""
        with self.db.lock:
            cursor = self.db.conn.execute(
                f"""
                UPDATE transcriptions SET status = 'processing', updated_at = {NOW}
                WHERE id = ? AND status = 'pending'
                """,
                (record_id,),
            )
            self.db.conn.commit()
        return cursor.rowcount == 1

    def set_provider_job(self, record_id: str, job_id: str) -> None:
        with self.db.lock:
            self.db.conn.execute(
                f"UPDATE transcriptions SET provider_job_id = ?, updated_at = {NOW} WHERE id = ?",
                (job_id, record_id),
            )
            self.db.conn.commit()

    def mark_completed(
        self,
        record_id: str,
        transcript_text: str,
        metadata: dict[str, Any],
        result_path: str | None = None,
    ) -> None:
        with self.db.lock:
            self.db.conn.execute(
                f"""
                UPDATE transcriptions
                SET status = 'completed', transcript_text = ?, metadata = ?, result_path = ?,
                    updated_at = {NOW}, completed_at = {NOW}
                WHERE id = ?
                """,
                (transcript_text, json.dumps(metadata), result_path, record_id),
            )
            row = self.db.conn.execute("SELECT filename FROM transcriptions WHERE id = ?", (record_id,)).fetchone()
            if row is not None:
                self._index(record_id, str(row["filename"]), transcript_text)
            self.db.conn.commit()

    def mark_failed(self, record_id: str, error: str, metadata: dict[str, Any]) -> None:
        merged = dict(metadata)
        merged["errorMessage"] = error
        with self.db.lock:
            self.db.conn.execute(
                f"""
                UPDATE transcriptions
                SET status = 'failed', metadata = ?, updated_at = {NOW}, completed_at = {NOW}
                WHERE id = ?
                """,
                (json.dumps(merged), record_id),
            )
            self.db.conn.commit()

    def list_transcriptions(
        self,
        *,
        status: str | None = None,
        source: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM transcriptions"
        clauses: list[str] = []
        params: list[Any] = []

        if status:
            clauses.append("status = ?")
            params.append(status)
        if source:
            clauses.append("source = ?")
            params.append(source)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(max(1, min(limit, 50)))

        rows = self.db.conn.execute(query, tuple(params)).fetchall()
        return [_decode(row) for row in rows]

    def search(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.conn.execute(
            """
            SELECT
                t.id,
                t.filename,
                t.language,
                t.source,
                t.created_at,
                snippet(transcriptions_fts, 2, '[', ']', ' ... ', 20) AS snippet,
                bm25(transcriptions_fts) AS score
            FROM transcriptions_fts
            JOIN transcriptions AS t ON t.id = transcriptions_fts.transcription_id
            WHERE transcriptions_fts MATCH ?
            ORDER BY score
            LIMIT ?
            """,
            (query, max(1, min(limit, 50))),
        ).fetchall()
        return [dict(row) for row in rows]

    def _index(self, record_id: str, filename: str, transcript_text: str) -> None:
        self.db.conn.execute("DELETE FROM transcriptions_fts WHERE transcription_id = ?", (record_id,))
        self.db.conn.execute(
            "INSERT INTO transcriptions_fts(transcription_id, filename, transcript_text) VALUES (?, ?, ?)",
            (record_id, filename, transcript_text),
        )
