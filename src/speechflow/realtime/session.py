from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from speechflow.config import RealtimeConfig
from speechflow.errors import RealtimeConnectionError
from speechflow.types import (
    Closed,
    EndOfUtterance,
    FinalTranscript,
    PartialTranscript,
    RealtimeEvent,
    RecognitionFailed,
    Started,
)

logger = logging.getLogger(__name__)


def decode_message(raw: str | bytes) -> RealtimeEvent | None:
    """Map one inbound provider message onto a typed event.

    Returns ``None`` for messages the transcript does not depend on
    (``AudioAdded``, ``Info``, ``Warning`` and anything unknown).
    """
    if isinstance(raw, bytes):
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding non-JSON realtime message: %.200s", raw)
        return None
    if not isinstance(data, dict):
        return None

    message = data.get("message")
    metadata = data.get("metadata")
    transcript = ""
    if isinstance(metadata, dict):
        transcript = str(metadata.get("transcript") or "").strip()

    if message == "RecognitionStarted":
        session_id = data.get("id")
        return Started(session_id=str(session_id) if session_id else None)
    if message == "AddPartialTranscript":
        return PartialTranscript(transcript)
    if message == "AddTranscript":
        return FinalTranscript(transcript)
    if message == "EndOfUtterance":
        return EndOfUtterance()
    if message == "Error":
        reason = data.get("reason") or data.get("type") or "unknown error"
        return RecognitionFailed(str(reason))
    if message == "EndOfTranscript":
        return Closed()

    if message == "Warning":
        logger.warning("Speechmatics warning: %s", data.get("reason"))
    else:
        logger.debug("Ignoring realtime message %s", message)
    return None


class RealtimeSession:
    """One Speechmatics realtime websocket, used for a single recognition.

    Audio goes out as binary frames in the order ``send_audio`` is awaited.
    ``events()`` may be iterated once; a new recognition needs a new session.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.config = config
        self._connect = connect
        self._ws: Any = None
        self._started_event: Started | None = None
        self._seq_no = 0
        self._stopped = False
        self._closed = False
        self._iterating = False

    @property
    def frames_sent(self) -> int:
        return self._seq_no

    @property
    def accepting_audio(self) -> bool:
        return self._ws is not None and not self._stopped

    async def start(self, auth_token: str, language: str | None = None) -> Started:
        if self._ws is not None or self._closed:
            raise RuntimeError("RealtimeSession cannot be restarted")

        timeout = self.config.handshake_timeout_seconds
        ws = None
        try:
            ws = await asyncio.wait_for(
                self._connect(self.config.url, additional_headers={"Authorization": f"Bearer {auth_token}"}),
                timeout=timeout,
            )
            await ws.send(json.dumps(self.config.start_message(language)))

            while True:
                event = decode_message(await asyncio.wait_for(ws.recv(), timeout=timeout))
                if isinstance(event, Started):
                    break
                if isinstance(event, RecognitionFailed):
                    raise RealtimeConnectionError(f"Speechmatics refused the session: {event.reason}")
                if isinstance(event, Closed):
                    raise RealtimeConnectionError("Speechmatics closed the session during handshake")
            if self._closed:
                raise RealtimeConnectionError("Realtime session was closed during the handshake")
        except (OSError, asyncio.TimeoutError, WebSocketException, RealtimeConnectionError) as exc:
            if ws is not None:
                await ws.close()
            self._closed = True
            if isinstance(exc, RealtimeConnectionError):
                raise
            raise RealtimeConnectionError(f"Error connecting to Speechmatics: {exc}") from exc

        self._ws = ws
        self._started_event = event
        logger.info("Realtime recognition started (session=%s)", event.session_id)
        return event

    async def send_audio(self, frame: bytes) -> None:
        if not self.accepting_audio:
            raise RealtimeConnectionError("Realtime session is not accepting audio")
        try:
            await self._ws.send(frame)
        except ConnectionClosed as exc:
            raise RealtimeConnectionError(f"Realtime connection lost: {exc}") from exc
        self._seq_no += 1

    async def events(self) -> AsyncIterator[RealtimeEvent]:
        if self._ws is None:
            raise RuntimeError("RealtimeSession.start() must complete before reading events")
        if self._iterating:
            raise RuntimeError("RealtimeSession events can only be consumed once")
        self._iterating = True

        if self._started_event is not None:
            yield self._started_event

        try:
            async for raw in self._ws:
                event = decode_message(raw)
                if event is None:
                    continue
                if isinstance(event, Closed):
                    break
                yield event
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            if not self._closed:
                raise RealtimeConnectionError(f"Realtime connection lost: {exc}") from exc
        yield Closed()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._ws is None or self._closed:
            return
        try:
            await self._ws.send(json.dumps({"message": "EndOfStream", "last_seq_no": self._seq_no}))
        except ConnectionClosed:
            logger.info("Realtime connection already closed before EndOfStream")

    async def close(self) -> None:
        await self.stop()
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
            logger.info("Realtime connection closed after %d frames", self._seq_no)
