"""Float sample to pcm_s16le conversion for the realtime stream."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def encode_samples(samples: Sequence[float] | np.ndarray) -> bytes:
    """Convert float samples in [-1.0, 1.0] to little-endian int16 PCM bytes.

    Samples are clamped first. Negative values scale by 32768 and
    non-negative values by 32767 so both ends of the int16 range are
    reachable; fractional results truncate toward zero.
    """
    audio = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    scaled = np.where(audio < 0, audio * 32768.0, audio * 32767.0)
    return scaled.astype("<i2").tobytes()
