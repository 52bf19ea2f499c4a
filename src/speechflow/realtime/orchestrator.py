from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

import numpy as np

from speechflow.config import RealtimeConfig
from speechflow.errors import ConfigurationError, RealtimeConnectionError, RecognitionError
from speechflow.realtime.capture import AudioSource, MicrophoneCapture
from speechflow.realtime.encoder import encode_samples
from speechflow.realtime.reconciler import TranscriptReconciler
from speechflow.realtime.session import RealtimeSession
from speechflow.types import Closed, SessionStatus, Started, TranscriptSnapshot

logger = logging.getLogger(__name__)


class TokenIssuer(Protocol):
    async def issue(self, ttl_seconds: int = 3600) -> str: ...


class SessionOrchestrator:
    """Runs one live microphone transcription.

    The capture callback encodes each buffer on the audio thread and hands
    the frame to the event loop; a single sender task forwards frames in
    capture order. A single receiver task feeds provider events into the
    reconciler. ``stop()`` releases the microphone, then the connection, then
    marks the session stopped, whatever triggered it.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        *,
        credentials: TokenIssuer | None,
        capture: AudioSource | None = None,
        session_factory: Callable[[RealtimeConfig], RealtimeSession] = RealtimeSession,
        encoder: Callable[[np.ndarray], bytes] = encode_samples,
        language: str | None = None,
        on_update: Callable[[TranscriptSnapshot], None] | None = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.capture = capture or MicrophoneCapture(sample_rate=config.sample_rate, block_size=config.block_size)
        self.language = language or config.language
        self.reconciler = TranscriptReconciler()
        self._session_factory = session_factory
        self._encode = encoder
        self._on_update = on_update

        self._status: SessionStatus = "idle"
        self._error: Exception | None = None
        self._session: RealtimeSession | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._frames: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._accepting = False
        self._sender: asyncio.Task[None] | None = None
        self._receiver: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Task[None] | None = None
        self._stop_lock = asyncio.Lock()
        self._terminated = asyncio.Event()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def transcript(self) -> TranscriptSnapshot:
        return self.reconciler.snapshot()

    async def __aenter__(self) -> SessionOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._status != "idle":
            raise RuntimeError("A realtime session can only be started once")
        if self.credentials is None or not self.config.api_key:
            raise ConfigurationError("Speechmatics API key not configured")

        self._status = "connecting"
        self._loop = asyncio.get_running_loop()
        try:
            logger.info("Requesting realtime credential")
            token = await self.credentials.issue(self.config.token_ttl_seconds)
            if self._status != "connecting":
                logger.info("Realtime session stopped while requesting a credential")
                return

            session = self._session_factory(self.config)
            self._session = session
            await session.start(token, self.language)
            if self._status != "connecting":
                await session.close()
                logger.info("Realtime session stopped during the handshake")
                return

            self._accepting = True
            self._sender = asyncio.create_task(self._send_loop(session))
            self._receiver = asyncio.create_task(self._receive_loop(session))
            self.capture.start(self._on_buffer)
        except RealtimeConnectionError:
            if self._status != "connecting":
                # stop() closed the session under the handshake.
                logger.info("Realtime session stopped during the handshake")
                return
            await self._shutdown()
            raise
        except BaseException:
            if self._status == "connecting":
                await self._shutdown()
            raise

        self._status = "recording"
        logger.info("Recording (language=%s)", self.language)

    async def stop(self) -> None:
        async with self._stop_lock:
            if self._status == "stopped":
                return
            if self._status == "idle":
                self._status = "stopped"
                self._terminated.set()
                return
            await self._shutdown()

    async def wait(self) -> TranscriptSnapshot:
        await self._terminated.wait()
        if self._error is not None:
            raise self._error
        return self.transcript

    def _on_buffer(self, samples: np.ndarray) -> None:
        # Runs on the audio thread.
        loop = self._loop
        if not self._accepting or loop is None or loop.is_closed():
            return
        frame = self._encode(samples)
        loop.call_soon_threadsafe(self._enqueue, frame)

    def _enqueue(self, frame: bytes) -> None:
        if self._accepting:
            self._frames.put_nowait(frame)

    async def _send_loop(self, session: RealtimeSession) -> None:
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            try:
                await session.send_audio(frame)
            except RealtimeConnectionError as exc:
                self._fail(exc)
                return

    async def _receive_loop(self, session: RealtimeSession) -> None:
        try:
            async for event in session.events():
                if isinstance(event, Started):
                    continue
                if isinstance(event, Closed):
                    break
                snapshot = self.reconciler.apply(event)
                if self._on_update is not None:
                    self._on_update(snapshot)
        except (RecognitionError, RealtimeConnectionError) as exc:
            self._fail(exc)
            return
        except Exception as exc:
            logger.exception("Realtime receiver failed")
            self._fail(exc)
            return

        if self._status == "recording":
            logger.info("Provider ended the realtime session")
            self._schedule_stop()

    def _fail(self, exc: Exception) -> None:
        if self._error is None:
            self._error = exc
            logger.error("Realtime session failed: %s", exc)
        self._schedule_stop()

    def _schedule_stop(self) -> None:
        if self._stop_task is None and self._status not in ("stopping", "stopped"):
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def _shutdown(self) -> None:
        self._status = "stopping"
        self._accepting = False
        try:
            self.capture.stop()
        finally:
            try:
                await self._close_session()
            finally:
                self._status = "stopped"
                self._terminated.set()
                logger.info("Realtime session stopped")

    async def _close_session(self) -> None:
        current = asyncio.current_task()
        timeout = self.config.drain_timeout_seconds

        sender = self._sender
        if sender is not None and sender is not current:
            self._frames.put_nowait(None)
            await _finish(sender, timeout)

        session = self._session
        if session is None:
            return
        try:
            await asyncio.wait_for(session.stop(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("EndOfStream was not acknowledged within %.1fs", timeout)

        receiver = self._receiver
        if receiver is not None and receiver is not current:
            # Final transcripts for already-sent audio may still arrive.
            await _finish(receiver, timeout)

        await session.close()


async def _finish(task: asyncio.Task[None], timeout: float) -> None:
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
