"""Internal models for source resolution and audio normalization."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np

SAMPLE_RATE = 16000
CHANNELS = 1
BIT_DEPTH = 16


@dataclass(frozen=True)
class LocalPath:
    path: Path


@dataclass(frozen=True)
class RemoteReference:
    url: str


MediaSource = Union[LocalPath, RemoteReference]


@dataclass(frozen=True)
class DecodedAudio:
    """Mono 16 kHz signed 16-bit little-endian PCM, the format the engine expects."""

    data: bytes
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    bit_depth: int = BIT_DEPTH

    def __post_init__(self) -> None:
        if (self.sample_rate, self.channels, self.bit_depth) != (SAMPLE_RATE, CHANNELS, BIT_DEPTH):
            raise ValueError(
                f"non-canonical audio: {self.sample_rate} Hz, {self.channels} ch, {self.bit_depth}-bit"
            )
        if len(self.data) % 2:
            raise ValueError(f"PCM buffer of {len(self.data)} bytes is not whole 16-bit samples")

    @property
    def num_samples(self) -> int:
        return len(self.data) // 2

    @property
    def duration_s(self) -> float:
        return self.num_samples / self.sample_rate

    def to_float32(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype="<i2").astype(np.float32) / 32768.0
