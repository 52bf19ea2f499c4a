from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from speechflow.errors import ProviderUnavailable, TranscriptionFailed, TranscriptionTimeout
from speechflow.types import FAILED_JOB_STATUSES, TranscriptionJob

logger = logging.getLogger(__name__)


class JobReader(Protocol):
    def fetch_status(self, job_id: str) -> str: ...

    def fetch_transcript(self, job_id: str) -> str: ...


class BatchPoller:
    """Polls a submitted job until it reaches a terminal state.

    Every status fetch consumes one attempt, including fetches that fail with
    ``ProviderUnavailable``: those are retried on the next tick but never
    extend the budget. Rejected responses and transcript fetch failures end
    the job immediately.
    """

    def __init__(
        self,
        client: JobReader,
        poll_interval_seconds: float = 3.0,
        max_attempts: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep

    def run(self, job_id: str) -> str:
        return self.poll(TranscriptionJob(job_id=job_id))

    def poll(self, job: TranscriptionJob) -> str:
        """Poll until terminal, keeping ``job.status`` at the last status read."""
        job_id = job.job_id
        last_error: ProviderUnavailable | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                status = self.client.fetch_status(job_id)
            except ProviderUnavailable as exc:
                logger.warning("Status poll %d/%d for job %s failed: %s", attempt, self.max_attempts, job_id, exc)
                last_error = exc
                status = None
            else:
                job.status = status

            if status == "done":
                logger.info("Job %s done after %d polls", job_id, attempt)
                return self.client.fetch_transcript(job_id)

            if status in FAILED_JOB_STATUSES:
                raise TranscriptionFailed(job_id, status)

            if attempt < self.max_attempts:
                self._sleep(self.poll_interval_seconds)

        raise TranscriptionTimeout(job_id, self.max_attempts) from last_error
