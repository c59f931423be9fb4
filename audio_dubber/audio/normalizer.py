"""
Format normalization: decode any common audio container to canonical PCM.

Everything downstream of this module assumes CANONICAL_SAMPLE_RATE and
CANONICAL_CHANNELS and does not re-validate the format.
"""

import logging
import os
from typing import Optional

import ffmpeg
import numpy as np
import soundfile as sf

from ..config import CANONICAL_CHANNELS, CANONICAL_SAMPLE_RATE
from ..core.buffer import AudioBuffer
from ..errors import CorruptAudioError, UnsupportedFormatError

logger = logging.getLogger(__name__)


def _stderr_text(error: ffmpeg.Error) -> str:
    stderr = getattr(error, "stderr", None) or b""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return stderr.strip()


def load_wav(path: str) -> AudioBuffer:
    """Read a WAV file written by this package into an AudioBuffer."""
    try:
        data, sr = sf.read(path, dtype="float32", always_2d=True)
    except RuntimeError as e:
        raise CorruptAudioError(f"Could not read decoded audio {path}: {e}") from e
    return AudioBuffer(data.T, sr)


def write_wav(buffer: AudioBuffer, path: str) -> str:
    """Write an AudioBuffer as a 32-bit float WAV file."""
    sf.write(path, buffer.samples.T, buffer.sample_rate, subtype="FLOAT")
    return path


def probe_audio(input_path: str) -> dict:
    """
    Inspect the input container and return its first audio stream.

    Raises:
        UnsupportedFormatError: If ffprobe does not recognize the file or it has no audio
        CorruptAudioError: If ffprobe is not installed
    """
    if not os.path.exists(input_path) or os.path.getsize(input_path) == 0:
        raise UnsupportedFormatError(f"Audio file is missing or empty: {input_path}")

    try:
        info = ffmpeg.probe(input_path)
    except ffmpeg.Error as e:
        logger.error(f"ffprobe could not read {input_path}: {_stderr_text(e)}")
        raise UnsupportedFormatError(f"Unrecognized audio format: {input_path}") from e
    except FileNotFoundError as e:
        raise CorruptAudioError("ffprobe is not installed") from e

    streams = [s for s in info.get("streams", []) if s.get("codec_type") == "audio"]
    if not streams:
        raise UnsupportedFormatError(f"No audio stream found in {input_path}")
    return streams[0]


def normalize(input_path: str,
              output_path: Optional[str] = None,
              sample_rate: int = CANONICAL_SAMPLE_RATE,
              channels: int = CANONICAL_CHANNELS) -> AudioBuffer:
    """
    Decode an arbitrary audio file to canonical PCM.

    Args:
        input_path: Path to the uploaded audio (mp3, wav, ogg, m4a, flac, ...)
        output_path: Where to write the canonical WAV (defaults next to the input)
        sample_rate: Target sample rate in Hz
        channels: Target channel count (1 or 2)

    Returns:
        AudioBuffer at the requested rate and layout

    Raises:
        UnsupportedFormatError: If the container is not recognized
        CorruptAudioError: If decoding fails partway or yields no samples
    """
    stream_info = probe_audio(input_path)
    logger.info(f"Decoding {input_path}: codec={stream_info.get('codec_name')}, "
                f"sr={stream_info.get('sample_rate')}, channels={stream_info.get('channels')}")

    if output_path is None:
        base, _ = os.path.splitext(input_path)
        output_path = f"{base}.normalized.wav"

    try:
        (
            ffmpeg
            .input(input_path)
            .output(output_path, acodec="pcm_f32le", ar=sample_rate, ac=channels, f="wav")
            .overwrite_output()
            .run(capture_stdout=True, capture_stderr=True)
        )
    except ffmpeg.Error as e:
        logger.error(f"ffmpeg failed to decode {input_path}: {_stderr_text(e)}")
        raise CorruptAudioError(f"Failed to decode audio: {input_path}") from e
    except FileNotFoundError as e:
        raise CorruptAudioError("ffmpeg is not installed") from e

    buffer = load_wav(output_path)
    if buffer.num_frames == 0:
        raise CorruptAudioError(f"Decoded audio is empty: {input_path}")

    # ffmpeg's float output can overshoot slightly on lossy sources
    buffer = buffer.with_samples(np.clip(buffer.samples, -1.0, 1.0))
    logger.info(f"Normalized audio: {buffer.duration:.2f}s, {buffer.sample_rate}Hz, {buffer.channel_count}ch")
    return buffer
