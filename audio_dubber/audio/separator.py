"""
Instrumental extraction by vocal suppression.

This is not studio-quality source separation: it produces a bed that is good
enough to lay a new narration over.

- Stereo input with distinct channels uses center-channel cancellation.
  Commercial mixes usually pan the lead vocal dead center, so subtracting
  one channel from the other removes it. Centered bass would go too, so the
  mid signal is kept below a low cutoff.
- Mono input (or "dual mono" stereo, where cancellation would leave silence)
  uses harmonic/percussive separation and attenuates the harmonic part
  inside the speech band.

Both paths work in the STFT domain and invert with an explicit length so the
output has exactly as many frames as the input.
"""

import logging
from typing import Tuple

import librosa
import numpy as np

from ..core.buffer import AudioBuffer

logger = logging.getLogger(__name__)

N_FFT = 2048
HOP_LENGTH = 512
BASS_CUTOFF_HZ = 150.0
VOCAL_BAND_HZ = (300.0, 3400.0)
VOCAL_ATTENUATION_DB = 12.0
DUAL_MONO_TOLERANCE = 1e-4
CENTER_PHASE_TOLERANCE = 0.2
CENTER_ENERGY_FLOOR = 1e-3
MAX_CHANNEL_GAIN = 4.0


def is_dual_mono(buffer: AudioBuffer, tolerance: float = DUAL_MONO_TOLERANCE) -> bool:
    """True if a stereo buffer carries the same signal on both channels."""
    if buffer.channel_count != 2 or buffer.num_frames == 0:
        return False
    left, right = buffer.samples
    return float(np.max(np.abs(left - right))) <= tolerance


def _center_gain(spec_left: np.ndarray, spec_right: np.ndarray) -> float:
    """
    Estimate how much louder the center image is in the left channel than in the right.

    Only bins that look center-panned count: both channels carry energy, the
    phases agree, and the levels are within MAX_CHANNEL_GAIN of each other.
    Content panned to one side is ignored, so it cannot skew the estimate.
    """
    mag_left = np.abs(spec_left)
    mag_right = np.abs(spec_right)
    energy = mag_left * mag_right
    if not energy.any():
        return 1.0

    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = mag_left / mag_right
    phase = np.abs(np.angle(spec_left * np.conj(spec_right)))
    centered = ((energy > CENTER_ENERGY_FLOOR * energy.max())
                & (phase < CENTER_PHASE_TOLERANCE)
                & (ratio >= 1.0 / MAX_CHANNEL_GAIN)
                & (ratio <= MAX_CHANNEL_GAIN))
    if not centered.any():
        return 1.0
    return float(np.median(ratio[centered]))


def center_cancel(left: np.ndarray, right: np.ndarray, sample_rate: int,
                  bass_cutoff: float = BASS_CUTOFF_HZ,
                  n_fft: int = N_FFT, hop_length: int = HOP_LENGTH) -> np.ndarray:
    """Return the side signal with the centered low end restored."""
    length = len(left)
    spec_left = librosa.stft(left, n_fft=n_fft, hop_length=hop_length)
    spec_right = librosa.stft(right, n_fft=n_fft, hop_length=hop_length)
    gain = _center_gain(spec_left, spec_right)

    side = 0.5 * (spec_left - gain * spec_right)
    mid = 0.5 * (spec_left + spec_right)

    freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=n_fft)
    bass = freqs < bass_cutoff
    side[bass, :] = mid[bass, :]

    logger.debug(f"Center cancellation: channel gain={gain:.3f}, bass bins kept={int(bass.sum())}")
    return librosa.istft(side, hop_length=hop_length, n_fft=n_fft, length=length)


def suppress_vocal_band(channel: np.ndarray, sample_rate: int,
                        vocal_band: Tuple[float, float] = VOCAL_BAND_HZ,
                        attenuation_db: float = VOCAL_ATTENUATION_DB,
                        n_fft: int = N_FFT, hop_length: int = HOP_LENGTH) -> np.ndarray:
    """Attenuate the harmonic component inside the vocal band of a single channel."""
    length = len(channel)
    spec = librosa.stft(channel, n_fft=n_fft, hop_length=hop_length)
    harmonic, percussive = librosa.decompose.hpss(spec)

    freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=n_fft)
    weights = np.ones_like(freqs)
    in_band = (freqs >= vocal_band[0]) & (freqs <= vocal_band[1])
    weights[in_band] = 10.0 ** (-attenuation_db / 20.0)

    result = harmonic * weights[:, np.newaxis] + percussive
    return librosa.istft(result, hop_length=hop_length, n_fft=n_fft, length=length)


def separate_instrumental(buffer: AudioBuffer) -> AudioBuffer:
    """
    Derive an instrumental bed with the narration suppressed.

    Args:
        buffer: Canonical audio (mono or stereo)

    Returns:
        A new AudioBuffer with the same sample rate, channel count and length
    """
    if buffer.num_frames < N_FFT:
        logger.warning(f"Audio too short for separation ({buffer.num_frames} frames), passing through")
        return buffer.with_samples(buffer.samples)

    samples = buffer.samples.astype(np.float32)
    sr = buffer.sample_rate

    if buffer.channel_count == 2 and not is_dual_mono(buffer):
        logger.info("Separating instrumental with center-channel cancellation")
        instrumental = center_cancel(samples[0], samples[1], sr)
        output = np.stack([instrumental, instrumental])
    elif buffer.channel_count == 2:
        logger.info("Stereo channels are identical, separating instrumental with HPSS vocal-band suppression")
        instrumental = suppress_vocal_band(samples[0], sr)
        output = np.stack([instrumental, instrumental])
    else:
        logger.info("Separating instrumental with HPSS vocal-band suppression")
        output = suppress_vocal_band(samples[0], sr)[np.newaxis, :]

    return buffer.with_samples(np.clip(output, -1.0, 1.0))
