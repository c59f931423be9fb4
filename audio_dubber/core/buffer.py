"""
In-memory representation of decoded audio shared by every numeric stage.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..errors import InvalidAudioStateError


@dataclass(frozen=True)
class AudioBuffer:
    """
    Decoded PCM audio.

    Samples are float32 in [-1.0, 1.0] with shape (channels, frames). The
    array is made read-only on construction, so every stage has to produce
    a new buffer instead of modifying its input.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        samples = np.asarray(self.samples)
        if samples.ndim == 1:
            samples = samples[np.newaxis, :]
        if samples.ndim != 2:
            raise InvalidAudioStateError(f"Expected 2-D samples (channels, frames), got shape {samples.shape}")
        if samples.shape[0] not in (1, 2):
            raise InvalidAudioStateError(f"Unsupported channel count: {samples.shape[0]}")
        if int(self.sample_rate) <= 0:
            raise InvalidAudioStateError(f"Invalid sample rate: {self.sample_rate}")

        samples = np.array(samples, dtype=np.float32, copy=True)
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @classmethod
    def from_channels(cls, channels: Sequence[np.ndarray], sample_rate: int) -> "AudioBuffer":
        """Build a buffer from per-channel arrays, which must all have the same length."""
        if not channels:
            raise InvalidAudioStateError("At least one channel is required")
        lengths = {len(channel) for channel in channels}
        if len(lengths) != 1:
            raise InvalidAudioStateError(f"Channel lengths differ: {sorted(lengths)}")
        return cls(np.stack([np.asarray(channel, dtype=np.float32) for channel in channels]), sample_rate)

    @classmethod
    def from_mono(cls, samples: np.ndarray, sample_rate: int) -> "AudioBuffer":
        return cls(np.asarray(samples, dtype=np.float32).reshape(1, -1), sample_rate)

    @classmethod
    def silence(cls, seconds: float, sample_rate: int, channels: int = 1) -> "AudioBuffer":
        return cls(np.zeros((channels, int(round(seconds * sample_rate))), dtype=np.float32), sample_rate)

    @property
    def channel_count(self) -> int:
        return self.samples.shape[0]

    @property
    def num_frames(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.num_frames / self.sample_rate

    def __len__(self) -> int:
        return self.num_frames

    def with_samples(self, samples: np.ndarray) -> "AudioBuffer":
        """Return a new buffer at the same sample rate."""
        return AudioBuffer(samples, self.sample_rate)

    def to_mono(self) -> np.ndarray:
        return self.samples.mean(axis=0)

    def peak(self) -> float:
        if self.num_frames == 0:
            return 0.0
        return float(np.max(np.abs(self.samples)))

    def rms(self) -> float:
        if self.num_frames == 0:
            return 0.0
        return float(np.sqrt(np.mean(np.square(self.samples, dtype=np.float64))))

    def is_silent(self) -> bool:
        return self.peak() == 0.0
