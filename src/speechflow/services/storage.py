from __future__ import annotations

import json
import mimetypes
import re
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from speechflow.types import ResolvedAudio

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
ALLOWED_MIME_TYPES = ("audio/mpeg", "audio/wav", "audio/mp4", "audio/m4a", "audio/ogg")
DEFAULT_BUCKET = "local"


def _sanitize_path_component(value: str, fallback: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9._-]+", "_", value.strip())
    clean = clean.strip("._")
    return clean or fallback


def _format_duration(seconds: float | None) -> str | None:
    if seconds is None:
        return None
    whole = int(max(seconds, 0))
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def to_markdown(record: dict[str, Any], text: str) -> str:
    lines: list[str] = []
    metadata = record.get("metadata") or {}

    title = metadata.get("originalName") or record.get("filename")
    if title:
        lines.append(f"# {title}")
        lines.append("")

    meta_lines: list[str] = []
    language = record.get("language")
    if language:
        meta_lines.append(f"**Language**: {language}")

    source = record.get("source")
    if source:
        meta_lines.append(f"**Source**: {source}")

    duration = _format_duration(record.get("duration"))
    if duration:
        meta_lines.append(f"**Duration**: {duration}")

    processing_ms = metadata.get("processingTime")
    if isinstance(processing_ms, (int, float)) and processing_ms > 0:
        meta_lines.append(f"**Processing time**: {_format_duration(processing_ms / 1000.0)}")

    if meta_lines:
        lines.extend(meta_lines)
        lines.append("")
        lines.append("---")
        lines.append("")

    lines.append("## Transcript")
    lines.append("")
    lines.append(text or "")
    return "\n".join(lines).strip() + "\n"


class StorageService:
    """Local audio store standing in for the object bucket.

    Audio references look like ``s3://<bucket>/<key>`` and map onto
    ``<data_dir>/uploads/<bucket>/<key>``. ``file://`` URIs and bare keys are
    accepted too. Every reference must stay inside the uploads directory.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.uploads_root = data_dir / "uploads"
        self.transcripts_root = data_dir / "transcripts"
        self.uploads_root.mkdir(parents=True, exist_ok=True)
        self.transcripts_root.mkdir(parents=True, exist_ok=True)

    def save_upload(self, *, filename: str, data: bytes, mime_type: str) -> str:
        if not filename or not mime_type:
            raise ValueError("Filename, fileSize and mimeType are required")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValueError("File size cannot exceed 20MB")
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValueError("Unsupported audio format")

        key = f"{uuid.uuid4()}/{_sanitize_path_component(filename, 'audio')}"
        target = self.uploads_root / DEFAULT_BUCKET / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"s3://{DEFAULT_BUCKET}/{key}"

    def path_for(self, audio_ref: str) -> Path:
        parsed = urlparse(audio_ref)
        if parsed.scheme == "s3":
            bucket = _sanitize_path_component(parsed.netloc, DEFAULT_BUCKET)
            path = (self.uploads_root / bucket / parsed.path.lstrip("/")).resolve()
        elif parsed.scheme == "file":
            path = Path(unquote(parsed.path)).resolve()
        elif not parsed.scheme:
            path = (self.uploads_root / audio_ref.lstrip("/")).resolve()
        else:
            raise ValueError(f"Unsupported audio reference: {audio_ref}")

        if not path.is_relative_to(self.uploads_root.resolve()):
            raise ValueError(f"Audio reference escapes the upload area: {audio_ref}")
        return path

    def resolve(self, audio_ref: str) -> ResolvedAudio:
        path = self.path_for(audio_ref)
        if not path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_ref}")

        content_type, _ = mimetypes.guess_type(path.name)
        return ResolvedAudio(
            data=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
            filename=path.name,
        )

    def export_transcript(self, record: dict[str, Any], text: str) -> dict[str, str]:
        record_dir = self.transcripts_root / _sanitize_path_component(str(record["id"]), "unknown")
        record_dir.mkdir(parents=True, exist_ok=True)

        transcript_json_path = record_dir / "transcript.json"
        transcript_md_path = record_dir / "transcript.md"
        transcript_txt_path = record_dir / "transcript.txt"

        payload = {
            "id": record["id"],
            "filename": record.get("filename"),
            "language": record.get("language"),
            "source": record.get("source"),
            "text": text,
            "words": text.split(),
        }
        transcript_json_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        transcript_md_path.write_text(to_markdown(record, text), encoding="utf-8")
        transcript_txt_path.write_text((text or "").strip() + "\n", encoding="utf-8")

        return {
            "path": str(record_dir),
            "transcript_md_path": str(transcript_md_path),
            "transcript_json_path": str(transcript_json_path),
            "transcript_txt_path": str(transcript_txt_path),
        }
