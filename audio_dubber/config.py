"""
Runtime configuration.

Every value has a default suitable for local use and can be overridden via
an environment variable; CLI flags override per run.
"""

import os
import tempfile
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return float(value)


# Workspace
WORKSPACE_ROOT = os.environ.get("AUDIO_DUBBER_WORKSPACE_ROOT", tempfile.gettempdir())
WORKSPACE_PREFIX = "audio-transform-"

# Canonical PCM layout for every numeric stage
CANONICAL_SAMPLE_RATE = int(os.environ.get("AUDIO_DUBBER_SAMPLE_RATE", "44100"))
CANONICAL_CHANNELS = 2

# Whisper expects 16 kHz mono
ASR_SAMPLE_RATE = 16000
WHISPER_MODEL = os.environ.get("AUDIO_DUBBER_WHISPER_MODEL", "small")

# Levels
VOICE_TARGET_PEAK_DBFS = _env_float("AUDIO_DUBBER_VOICE_PEAK_DBFS", -3.0)
VOICE_FADE_SECONDS = 0.01
MIX_CEILING = 1.0

# Output
OUTPUT_BITRATE = os.environ.get("AUDIO_DUBBER_BITRATE", "192k")
OUTPUT_CONTENT_TYPE = "audio/mpeg"
OUTPUT_FILENAME = "translated-mix.mp3"

# Languages
DEFAULT_TARGET_LANGUAGE = "es"
DEFAULT_SOURCE_LANGUAGE = "en"

# Orchestration
CONCURRENT_BRANCHES = _env_bool("AUDIO_DUBBER_CONCURRENT_BRANCHES", True)
REQUEST_TIMEOUT = _env_float("AUDIO_DUBBER_REQUEST_TIMEOUT", None)

# HTTP boundary
MAX_UPLOAD_BYTES = int(float(os.environ.get("AUDIO_DUBBER_MAX_UPLOAD_MB", "100")) * 1024 * 1024)
LOG_LEVEL = os.environ.get("AUDIO_DUBBER_LOG_LEVEL", "INFO")
