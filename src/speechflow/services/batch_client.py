from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from speechflow.config import BatchConfig
from speechflow.errors import (
    ConfigurationError,
    ProviderRejected,
    ProviderUnavailable,
    TranscriptUnavailable,
)
from speechflow.types import ResolvedAudio

logger = logging.getLogger(__name__)


class AudioResolver(Protocol):
    def resolve(self, audio_ref: str) -> ResolvedAudio: ...


class BatchJobClient:
    """Speechmatics batch jobs API: submit, status and transcript reads."""

    def __init__(
        self,
        config: BatchConfig,
        resolver: AudioResolver,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def submit(self, audio_ref: str, language: str) -> str:
        headers = self._headers()
        audio = self.resolver.resolve(audio_ref)
        logger.info("Submitting %s (%d bytes, language=%s)", audio_ref, len(audio.data), language)

        job_config = {
            "type": "transcription",
            "transcription_config": {
                "language": language,
                "operating_point": self.config.operating_point,
            },
        }
        payload = self._request(
            "POST",
            "/jobs",
            "job create",
            headers=headers,
            data={"config": json.dumps(job_config)},
            files={"data_file": (audio.filename, audio.data, audio.content_type)},
        )

        job_id = payload.get("id")
        if not job_id:
            raise ProviderRejected("job create", 200, "response missing job id")
        return str(job_id)

    def fetch_status(self, job_id: str) -> str:
        payload = self._request("GET", f"/jobs/{job_id}", "job status", headers=self._headers())
        job = payload.get("job")
        if not isinstance(job, dict):
            job = payload
        return str(job.get("status") or "").lower()

    def fetch_transcript(self, job_id: str) -> str:
        response = self._send(
            "GET",
            f"/jobs/{job_id}/transcript",
            "transcript",
            headers=self._headers(),
            params={"format": "json-v2"},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptUnavailable(job_id, "Malformed transcript response") from exc

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise TranscriptUnavailable(job_id)
        return self._join_words(results)

    @staticmethod
    def _join_words(results: list[Any]) -> str:
        words: list[str] = []
        for item in results:
            if not isinstance(item, dict) or item.get("type") != "word":
                continue
            alternatives = item.get("alternatives")
            content = ""
            if isinstance(alternatives, list) and alternatives and isinstance(alternatives[0], dict):
                content = str(alternatives[0].get("content") or "")
            words.append(content)
        return " ".join(words).strip()

    def _headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise ConfigurationError("Speechmatics API key not configured")
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _send(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.config.base_url}{path}"
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(operation, exc) from exc

        if not response.is_success:
            raise ProviderRejected(operation, response.status_code, response.text)
        return response

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        response = self._send(method, path, operation, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRejected(operation, response.status_code, response.text) from exc
        if not isinstance(payload, dict):
            raise ProviderRejected(operation, response.status_code, response.text)
        return payload
