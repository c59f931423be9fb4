import logging
import warnings
from typing import NamedTuple, Optional

import librosa
import numpy as np
import torch
import whisper

from ..config import ASR_SAMPLE_RATE, WHISPER_MODEL
from ..errors import TranscriptionError
from .buffer import AudioBuffer
from .registry import ModelRegistry, default_registry

logger = logging.getLogger(__name__)


class Transcript(NamedTuple):
    text: str
    detected_language: Optional[str] = None


class Transcriber:
    """ASR collaborator: AudioBuffer in, transcript text (and detected language) out."""

    def transcribe(self, buffer: AudioBuffer) -> Transcript:
        raise NotImplementedError


def _load_whisper(model_name: str):
    device = "cuda" if torch.cuda.is_available() else "cpu"
    logger.info(f"Loading Whisper model '{model_name}' on {device}")
    return whisper.load_model(model_name, device=device)


class WhisperTranscriber(Transcriber):
    """Transcribe with OpenAI Whisper, letting the model detect the source language."""

    def __init__(self, model_name: str = WHISPER_MODEL, registry: Optional[ModelRegistry] = None):
        self.model_name = model_name
        self.registry = registry or default_registry

    @property
    def model_key(self) -> str:
        return f"whisper:{self.model_name}"

    def _model(self):
        return self.registry.get(self.model_key, lambda: _load_whisper(self.model_name))

    def transcribe(self, buffer: AudioBuffer) -> Transcript:
        """
        Transcribe the whole buffer in one pass.

        Args:
            buffer: Audio at any sample rate/layout; downmixed and resampled to 16 kHz

        Returns:
            Transcript with stripped text and Whisper's detected language code

        Raises:
            TranscriptionError: If the model fails or returns no text
        """
        audio = buffer.to_mono()
        if buffer.sample_rate != ASR_SAMPLE_RATE:
            audio = librosa.resample(audio, orig_sr=buffer.sample_rate, target_sr=ASR_SAMPLE_RATE)
        audio = np.ascontiguousarray(audio, dtype=np.float32)

        try:
            model = self._model()
            use_fp16 = torch.cuda.is_available()
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", message="FP16 is not supported on CPU; using FP32 instead")
                result = model.transcribe(
                    audio,
                    fp16=use_fp16,
                    condition_on_previous_text=True,
                    temperature=0.0,
                )
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e

        if isinstance(result, str):
            text, language = result, None
        else:
            text, language = result.get("text") or "", result.get("language")

        text = str(text).strip()
        if not text:
            raise TranscriptionError("Unable to derive transcript from audio")

        logger.info(f"Transcribed {buffer.duration:.2f}s of audio "
                    f"({len(text)} chars, detected language: {language})")
        return Transcript(text=text, detected_language=language)
