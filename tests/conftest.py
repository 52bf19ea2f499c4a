import asyncio
import json
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedOK

from speechflow.config import RealtimeConfig


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(
        self,
        *,
        handshake: list[dict[str, Any]] | None = None,
        end_of_stream_replies: list[dict[str, Any]] | None = None,
        log: list[str] | None = None,
    ) -> None:
        self.sent: list[Any] = []
        self.closed = False
        self.close_calls = 0
        self.log = log if log is not None else []
        self.end_of_stream_replies = (
            end_of_stream_replies if end_of_stream_replies is not None else [{"message": "EndOfTranscript"}]
        )
        self._inbound: asyncio.Queue[str | None] = asyncio.Queue()
        for message in handshake if handshake is not None else [{"message": "RecognitionStarted", "id": "rt-1"}]:
            self.push(message)

    def push(self, message: dict[str, Any]) -> None:
        self._inbound.put_nowait(json.dumps(message))

    def end(self) -> None:
        self._inbound.put_nowait(None)

    @property
    def audio_frames(self) -> list[bytes]:
        return [item for item in self.sent if isinstance(item, bytes)]

    @property
    def control_messages(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent if isinstance(item, str)]

    async def send(self, message: Any) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(message)
        if isinstance(message, str) and json.loads(message).get("message") == "EndOfStream":
            self.log.append("ws.end_of_stream")
            for reply in self.end_of_stream_replies:
                self.push(reply)

    async def recv(self) -> str:
        message = await self._inbound.get()
        if message is None:
            raise ConnectionClosedOK(None, None)
        return message

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        message = await self._inbound.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self) -> None:
        self.close_calls += 1
        self.log.append("ws.close")
        if not self.closed:
            self.closed = True
            self.end()


class FakeConnector:
    def __init__(self, ws: FakeWebSocket) -> None:
        self.ws = ws
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def __call__(self, url: str, additional_headers: dict[str, str] | None = None) -> FakeWebSocket:
        self.calls.append((url, dict(additional_headers or {})))
        return self.ws


@pytest.fixture
def rt_config() -> RealtimeConfig:
    return RealtimeConfig(
        api_key="secret",
        url="wss://rt.example.test/v2",
        language="es",
        handshake_timeout_seconds=1.0,
        drain_timeout_seconds=0.5,
    )
