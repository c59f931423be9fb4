"""
Level processing for synthesized narration.
"""

import logging

import numpy as np

from ..config import MIX_CEILING, VOICE_TARGET_PEAK_DBFS
from ..core.buffer import AudioBuffer

logger = logging.getLogger(__name__)

SILENCE_DBFS = -120.0


def db_to_amplitude(db: float) -> float:
    return float(10.0 ** (db / 20.0))


def amplitude_to_db(amplitude: float) -> float:
    if amplitude <= 0.0:
        return SILENCE_DBFS
    return float(20.0 * np.log10(amplitude))


def peak_dbfs(buffer: AudioBuffer) -> float:
    return amplitude_to_db(buffer.peak())


def rms_dbfs(buffer: AudioBuffer) -> float:
    return amplitude_to_db(buffer.rms())


def apply_fades(buffer: AudioBuffer, fade_seconds: float) -> AudioBuffer:
    """Apply a short linear fade-in and fade-out to avoid clicks at the edges."""
    fade_len = min(int(fade_seconds * buffer.sample_rate), buffer.num_frames // 2)
    if fade_len <= 0:
        return buffer.with_samples(buffer.samples)

    envelope = np.ones(buffer.num_frames, dtype=np.float32)
    ramp = np.linspace(0.0, 1.0, fade_len, dtype=np.float32)
    envelope[:fade_len] = ramp
    envelope[-fade_len:] = ramp[::-1]
    return buffer.with_samples(buffer.samples * envelope)


def normalize_voice(buffer: AudioBuffer,
                    target_dbfs: float = VOICE_TARGET_PEAK_DBFS,
                    ceiling: float = MIX_CEILING) -> AudioBuffer:
    """
    Peak-normalize synthesized speech to a fixed level.

    TTS engines emit audio at arbitrary, model-dependent levels. Scaling the
    peak to target_dbfs puts the narration at a predictable level over the
    instrumental; applying this twice gives the same result as once.

    Args:
        buffer: Synthesized voice
        target_dbfs: Peak level to normalize to (e.g. -3.0)
        ceiling: Absolute sample limit applied after scaling

    Returns:
        A new, normalized AudioBuffer; silent input is returned unchanged
    """
    peak = buffer.peak()
    if peak == 0.0:
        logger.warning("Synthesized voice is silent, skipping normalization")
        return buffer

    target = min(db_to_amplitude(target_dbfs), ceiling)
    gain = target / peak
    scaled = np.clip(buffer.samples * gain, -ceiling, ceiling)

    logger.info(f"Normalized voice: peak {amplitude_to_db(peak):.1f} dBFS -> {target_dbfs:.1f} dBFS "
                f"(gain {amplitude_to_db(gain):+.1f} dB)")
    return buffer.with_samples(scaled)
