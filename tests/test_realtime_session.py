import pytest

from conftest import FakeConnector, FakeWebSocket
from speechflow.config import RealtimeConfig
from speechflow.errors import RealtimeConnectionError
from speechflow.realtime.session import RealtimeSession, decode_message
from speechflow.types import (
    Closed,
    EndOfUtterance,
    FinalTranscript,
    PartialTranscript,
    RecognitionFailed,
    Started,
)


def test_decode_message_maps_provider_messages() -> None:
    assert decode_message('{"message": "RecognitionStarted", "id": "abc"}') == Started("abc")
    assert decode_message(
        '{"message": "AddPartialTranscript", "metadata": {"transcript": " hola "}}'
    ) == PartialTranscript("hola")
    assert decode_message(
        '{"message": "AddTranscript", "metadata": {"transcript": "hola mundo"}}'
    ) == FinalTranscript("hola mundo")
    assert decode_message('{"message": "EndOfUtterance", "metadata": {}}') == EndOfUtterance()
    assert decode_message('{"message": "Error", "type": "invalid_model", "reason": "bad language"}') == RecognitionFailed(
        "bad language"
    )
    assert decode_message('{"message": "EndOfTranscript"}') == Closed()


def test_decode_message_skips_irrelevant_messages() -> None:
    assert decode_message('{"message": "AudioAdded", "seq_no": 1}') is None
    assert decode_message('{"message": "Warning", "reason": "duration_limit"}') is None
    assert decode_message("not json") is None
    assert decode_message(b"\x00\x01") is None


@pytest.mark.asyncio
async def test_start_sends_recognition_config(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket()
    connector = FakeConnector(ws)
    session = RealtimeSession(rt_config, connect=connector)

    started = await session.start("temp-token", "es")

    assert started == Started("rt-1")
    assert connector.calls == [("wss://rt.example.test/v2", {"Authorization": "Bearer temp-token"})]
    start = ws.control_messages[0]
    assert start["message"] == "StartRecognition"
    assert start["audio_format"] == {"type": "raw", "encoding": "pcm_s16le", "sample_rate": 16000}
    transcription = start["transcription_config"]
    assert transcription["language"] == "es"
    assert transcription["operating_point"] == "standard"
    assert transcription["enable_partials"] is True
    assert transcription["max_delay"] == 1.0
    assert transcription["transcript_filtering_config"] == {"remove_disfluencies": True}
    assert transcription["conversation_config"] == {"end_of_utterance_silence_trigger": 1.5}


@pytest.mark.asyncio
async def test_handshake_error_raises_connection_error(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket(handshake=[{"message": "Error", "type": "not_authorised", "reason": "bad token"}])
    session = RealtimeSession(rt_config, connect=FakeConnector(ws))

    with pytest.raises(RealtimeConnectionError, match="bad token"):
        await session.start("temp-token")
    assert ws.closed


@pytest.mark.asyncio
async def test_handshake_timeout_raises_connection_error(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket(handshake=[])
    session = RealtimeSession(rt_config, connect=FakeConnector(ws))

    with pytest.raises(RealtimeConnectionError):
        await session.start("temp-token")


@pytest.mark.asyncio
async def test_connect_failure_raises_connection_error(rt_config: RealtimeConfig) -> None:
    async def refuse(url: str, additional_headers: dict[str, str] | None = None) -> FakeWebSocket:
        raise OSError("connection refused")

    session = RealtimeSession(rt_config, connect=refuse)
    with pytest.raises(RealtimeConnectionError, match="connection refused"):
        await session.start("temp-token")


@pytest.mark.asyncio
async def test_audio_and_events_flow_in_order(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket()
    session = RealtimeSession(rt_config, connect=FakeConnector(ws))
    await session.start("temp-token")

    for index in range(3):
        await session.send_audio(bytes([index]) * 4)
    assert ws.audio_frames == [b"\x00" * 4, b"\x01" * 4, b"\x02" * 4]
    assert session.frames_sent == 3

    ws.push({"message": "AudioAdded", "seq_no": 3})
    ws.push({"message": "AddPartialTranscript", "metadata": {"transcript": "hola"}})
    ws.push({"message": "AddTranscript", "metadata": {"transcript": "hola mundo"}})
    ws.push({"message": "EndOfUtterance", "metadata": {}})
    await session.stop()

    events = [event async for event in session.events()]
    assert events == [
        Started("rt-1"),
        PartialTranscript("hola"),
        FinalTranscript("hola mundo"),
        EndOfUtterance(),
        Closed(),
    ]
    assert ws.control_messages[-1] == {"message": "EndOfStream", "last_seq_no": 3}


@pytest.mark.asyncio
async def test_stop_refuses_further_audio(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket()
    session = RealtimeSession(rt_config, connect=FakeConnector(ws))
    await session.start("temp-token")

    await session.stop()
    await session.stop()
    with pytest.raises(RealtimeConnectionError):
        await session.send_audio(b"\x00\x00")

    end_of_stream = [m for m in ws.control_messages if m["message"] == "EndOfStream"]
    assert len(end_of_stream) == 1

    await session.close()
    await session.close()
    assert ws.close_calls == 1


@pytest.mark.asyncio
async def test_events_are_not_restartable(rt_config: RealtimeConfig) -> None:
    ws = FakeWebSocket()
    session = RealtimeSession(rt_config, connect=FakeConnector(ws))
    await session.start("temp-token")
    ws.end()

    assert [event async for event in session.events()] == [Started("rt-1"), Closed()]
    with pytest.raises(RuntimeError):
        async for _ in session.events():
            pass
    await session.close()
    with pytest.raises(RuntimeError):
        await session.start("temp-token")
