from __future__ import annotations

import json
import mimetypes
from pathlib import Path
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from speechflow.db.transcriptions import TranscriptionsRepository
from speechflow.errors import SpeechflowError
from speechflow.services.pipeline import (
    BatchTranscriptionService,
    TranscriptionAlreadyProcessed,
    save_realtime_transcript,
)
from speechflow.services.storage import StorageService

SUPPORTED_FORMATS = ["markdown", "json", "text"]


class ToolRegistry:
    def __init__(
        self,
        transcriptions: TranscriptionsRepository,
        storage: StorageService,
        service: BatchTranscriptionService,
        default_language: str = "es",
    ) -> None:
        self.transcriptions = transcriptions
        self.storage = storage
        self.service = service
        self.default_language = default_language

    def register(self, mcp: FastMCP) -> None:
        _ro = ToolAnnotations(readOnlyHint=True)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False))
        def register_audio(path: str, language: str | None = None, mime_type: str | None = None) -> dict[str, Any]:
            """Store a local audio file and create a pending transcription for it.

            Args:
                path: Path of the audio file on the server
                language: ISO language code (default: server default, usually "es")
                mime_type: Audio MIME type; guessed from the file name when omitted
            """
            audio_path = Path(path).expanduser()
            if not audio_path.is_file():
                return {"error": "file_not_found", "path": path}

            content_type = mime_type or mimetypes.guess_type(audio_path.name)[0] or ""
            data = audio_path.read_bytes()
            try:
                audio_ref = self.storage.save_upload(filename=audio_path.name, data=data, mime_type=content_type)
            except ValueError as exc:
                return {"error": "validation_failed", "message": str(exc)}

            record = self.transcriptions.create(
                filename=audio_path.name,
                audio_ref=audio_ref,
                file_size=len(data),
                language=language or self.default_language,
                metadata={"originalName": audio_path.name, "mimeType": content_type},
            )
            return {
                "transcription_id": record["id"],
                "status": record["status"],
                "audio_ref": audio_ref,
            }

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=False))
        def process_transcription(transcription_id: str) -> dict[str, Any]:
            """Submit a pending transcription to Speechmatics and wait for the result."""
            try:
                record = self.service.process(transcription_id)
            except LookupError:
                return {"error": "transcription_not_found", "transcription_id": transcription_id}
            except TranscriptionAlreadyProcessed as exc:
                return {"error": "already_processed", "transcription_id": transcription_id, "status": exc.status}
            except (SpeechflowError, OSError) as exc:
                return {
                    "error": "transcription_failed",
                    "transcription_id": transcription_id,
                    "message": str(exc),
                    "record": self.transcriptions.get(transcription_id),
                }
            return record

        @mcp.tool(annotations=_ro)
        def transcription_status(transcription_id: str) -> dict[str, Any]:
            record = self.transcriptions.get(transcription_id)
            if record is None:
                return {"error": "transcription_not_found", "transcription_id": transcription_id}
            return record

        @mcp.tool(annotations=_ro)
        def list_transcriptions(
            status: str | None = None,
            source: str | None = None,
            limit: int = 10,
        ) -> dict[str, Any]:
            if limit > 50:
                return {"error": "validation_failed", "message": "Limit cannot exceed 50"}
            items = self.transcriptions.list_transcriptions(status=status, source=source, limit=limit)
            return {
                "count": len(items),
                "items": items,
            }

        @mcp.tool(annotations=_ro)
        def search_transcriptions(query: str, limit: int = 10) -> dict[str, Any]:
            return {
                "query": query,
                "results": self.transcriptions.search(query=query, limit=limit),
            }

        @mcp.tool(annotations=_ro)
        def read_transcription(
            transcription_id: str,
            format: str = "text",
            offset: int = 0,
            limit: int | None = None,
        ) -> dict[str, Any]:
            """Read a finished transcript.

            Args:
                transcription_id: The transcription to read
                format: Output format - "markdown", "text", or "json" (default: "text")
                offset: Number of lines (markdown/text) or words (json) to skip (default: 0)
                limit: Max lines/words to return. None returns all remaining.
            """
            record = self.transcriptions.get(transcription_id)
            if record is None:
                return {"error": "transcription_not_found", "transcription_id": transcription_id}
            if record["status"] != "completed":
                return {"error": "transcription_not_completed", "status": record["status"]}
            if format not in SUPPORTED_FORMATS:
                return {"error": "unsupported_format", "supported_formats": SUPPORTED_FORMATS}

            base = Path(str(record["result_path"])) if record.get("result_path") else None
            text = str(record.get("transcript_text") or "")

            if format == "json":
                file_path = base / "transcript.json" if base else None
                if file_path is not None and file_path.exists():
                    words = json.loads(file_path.read_text(encoding="utf-8")).get("words", [])
                else:
                    words = text.split()
                page = words[offset:] if limit is None else words[offset:offset + limit]
                return {
                    "transcription_id": transcription_id,
                    "format": "json",
                    "content": page,
                    "total_words": len(words),
                    "offset": offset,
                    "words_returned": len(page),
                    "metadata": record,
                }

            ext = "md" if format == "markdown" else "txt"
            file_path = base / f"transcript.{ext}" if base else None
            if file_path is not None and file_path.exists():
                full = file_path.read_text(encoding="utf-8")
            else:
                full = text + "\n"
            lines = full.splitlines(keepends=True)
            page = lines[offset:] if limit is None else lines[offset:offset + limit]
            return {
                "transcription_id": transcription_id,
                "format": format,
                "content": "".join(page),
                "total_lines": len(lines),
                "offset": offset,
                "lines_returned": len(page),
                "metadata": record,
            }

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False))
        def save_realtime_transcription(transcript_text: str, language: str | None = None) -> dict[str, Any]:
            """Save text captured by a live session as a completed transcription."""
            try:
                return save_realtime_transcript(
                    self.transcriptions,
                    self.storage,
                    transcript_text,
                    language or self.default_language,
                )
            except ValueError as exc:
                return {"error": "validation_failed", "message": str(exc)}
