from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

import numpy as np

logger = logging.getLogger(__name__)

BufferCallback = Callable[[np.ndarray], None]


class AudioSource(Protocol):
    def start(self, on_buffer: BufferCallback) -> None: ...

    def stop(self) -> None: ...

    @property
    def is_running(self) -> bool: ...


class MicrophoneCapture:
    """Mono float32 microphone input via sounddevice.

    The callback fires on the PortAudio thread once per ``block_size``
    frames and must return quickly.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        block_size: int = 4096,
        device: int | str | None = None,
        stream_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self._stream_factory = stream_factory
        self._stream: Any = None
        self._on_buffer: BufferCallback | None = None

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def start(self, on_buffer: BufferCallback) -> None:
        if self._stream is not None:
            return

        stream_factory = self._stream_factory
        if stream_factory is None:
            try:
                import sounddevice as sd
            except (ImportError, OSError) as exc:
                raise RuntimeError(
                    "sounddevice (with a working PortAudio) is required for microphone capture"
                ) from exc
            stream_factory = sd.InputStream

        self._on_buffer = on_buffer
        stream = stream_factory(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self.block_size,
            device=self.device,
            callback=self._callback,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            self._on_buffer = None
            raise
        self._stream = stream
        logger.info("Microphone capture started (sample_rate=%s, block_size=%s)", self.sample_rate, self.block_size)

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)
        on_buffer = self._on_buffer
        if on_buffer is not None:
            on_buffer(indata[:, 0].copy())

    def stop(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        self._on_buffer = None
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Microphone capture stopped")
