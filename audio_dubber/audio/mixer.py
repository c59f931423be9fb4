"""
Mixing the instrumental bed with the narration and encoding the result.
"""

import logging
import os
from typing import Optional

import ffmpeg
import librosa
import numpy as np

from ..config import MIX_CEILING, OUTPUT_BITRATE
from ..core.buffer import AudioBuffer
from ..errors import EncodingError
from .normalizer import write_wav

logger = logging.getLogger(__name__)


def align(buffer: AudioBuffer, sample_rate: int, channels: int) -> AudioBuffer:
    """
    Resample and up/down-mix a buffer to the given layout.

    The target layout always wins: a stereo buffer aligned to channels=1 is
    downmixed. mix_buffers aligns the voice to the instrumental, which is
    stereo in the pipeline, so a mono voice is upmixed there.

    Args:
        buffer: Audio to convert
        sample_rate: Target sample rate
        channels: Target channel count (1 or 2)

    Returns:
        A new AudioBuffer (or the input itself if it already matches)
    """
    samples = buffer.samples
    if buffer.sample_rate != sample_rate:
        if buffer.num_frames > 0:
            samples = librosa.resample(samples, orig_sr=buffer.sample_rate, target_sr=sample_rate, axis=-1)
        else:
            samples = np.zeros((buffer.channel_count, 0), dtype=np.float32)

    if samples.shape[0] != channels:
        if channels == 2:
            samples = np.repeat(samples[:1], 2, axis=0)
        else:
            samples = samples.mean(axis=0, keepdims=True)

    if samples is buffer.samples:
        return buffer
    return AudioBuffer(samples, sample_rate)


def mix_buffers(instrumental: AudioBuffer, voice: AudioBuffer, ceiling: float = MIX_CEILING) -> AudioBuffer:
    """
    Sum the instrumental and the voice sample by sample.

    The voice is aligned to the instrumental's sample rate and channel count.
    The output is as long as the longer input: the shorter one is padded with
    silence, so the instrumental tail survives a shorter narration. The sum is
    clamped to +/-ceiling.
    """
    voice = align(voice, instrumental.sample_rate, instrumental.channel_count)

    length = max(instrumental.num_frames, voice.num_frames)
    bed = np.pad(instrumental.samples, ((0, 0), (0, length - instrumental.num_frames)))
    narration = np.pad(voice.samples, ((0, 0), (0, length - voice.num_frames)))

    mixed = bed + narration
    clipped = int(np.count_nonzero(np.abs(mixed) > ceiling))
    if clipped:
        logger.warning(f"Limiter clamped {clipped} samples above {ceiling}")

    logger.info(f"Mixed instrumental ({instrumental.duration:.2f}s) with voice ({voice.duration:.2f}s) "
                f"-> {length / instrumental.sample_rate:.2f}s")
    return instrumental.with_samples(np.clip(mixed, -ceiling, ceiling))


def encode(buffer: AudioBuffer, output_path: str,
           bitrate: str = OUTPUT_BITRATE,
           wav_path: Optional[str] = None) -> bytes:
    """
    Encode a buffer to MP3 and return the encoded bytes.

    Args:
        buffer: Final mix
        output_path: Path of the MP3 file to write
        bitrate: Fixed MP3 bitrate, e.g. "192k"
        wav_path: Intermediate WAV path (defaults next to output_path)

    Raises:
        EncodingError: If ffmpeg/libmp3lame is unavailable or the write fails
    """
    if wav_path is None:
        wav_path = os.path.splitext(output_path)[0] + ".wav"

    try:
        write_wav(buffer, wav_path)
    except Exception as e:
        raise EncodingError(f"Failed to write mix to {wav_path}: {e}") from e

    try:
        (
            ffmpeg
            .input(wav_path)
            .output(output_path, acodec="libmp3lame", audio_bitrate=bitrate, f="mp3")
            .overwrite_output()
            .run(capture_stdout=True, capture_stderr=True)
        )
    except ffmpeg.Error as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
        logger.error(f"ffmpeg failed to encode {output_path}: {stderr}")
        raise EncodingError(f"MP3 encoding failed: {output_path}") from e
    except FileNotFoundError as e:
        raise EncodingError("ffmpeg is not installed") from e

    try:
        with open(output_path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise EncodingError(f"Could not read encoded output {output_path}: {e}") from e
    if not data:
        raise EncodingError(f"Encoded output is empty: {output_path}")

    logger.info(f"Encoded {buffer.duration:.2f}s mix to {output_path} ({len(data)} bytes, {bitrate})")
    return data


def mix(instrumental: AudioBuffer, voice: AudioBuffer, output_path: str,
        bitrate: str = OUTPUT_BITRATE, ceiling: float = MIX_CEILING) -> bytes:
    """Mix the two tracks and encode the result; see mix_buffers and encode."""
    return encode(mix_buffers(instrumental, voice, ceiling=ceiling), output_path, bitrate=bitrate)
