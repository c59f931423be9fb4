"""
Text-to-speech using Coqui TTS, one single-speaker model per target language.
"""

import logging
import os
from typing import Optional

import numpy as np
import torch
from TTS.api import TTS

from ..core.buffer import AudioBuffer
from ..core.registry import ModelRegistry, default_registry
from ..errors import SynthesisError
from ..languages import LanguageCode, models_for

logger = logging.getLogger(__name__)

DEFAULT_TTS_SAMPLE_RATE = 22050


class Synthesizer:
    """TTS collaborator: target-language text in, mono voice AudioBuffer out."""

    def synthesize(self, text: str, language: LanguageCode) -> AudioBuffer:
        raise NotImplementedError


def _load_tts(model_name: str) -> TTS:
    # Accept Coqui TTS license terms for non-interactive downloads
    os.environ["COQUI_TOS_AGREED"] = "1"
    use_gpu = torch.cuda.is_available()
    return TTS(model_name=model_name, progress_bar=False, gpu=use_gpu)


def _output_sample_rate(tts: TTS) -> int:
    synthesizer = getattr(tts, "synthesizer", None)
    rate = getattr(synthesizer, "output_sample_rate", None)
    return int(rate) if rate else DEFAULT_TTS_SAMPLE_RATE


class CoquiSynthesizer(Synthesizer):

    def __init__(self, registry: Optional[ModelRegistry] = None):
        self.registry = registry or default_registry

    def _model(self, language: LanguageCode) -> TTS:
        model_name = models_for(language).tts_model
        return self.registry.get(f"tts:{model_name}", lambda: _load_tts(model_name))

    def synthesize(self, text: str, language: LanguageCode) -> AudioBuffer:
        """
        Synthesize speech for the whole text.

        Args:
            text: Target-language text
            language: Target language, selects the TTS model

        Returns:
            Mono AudioBuffer at the model's output sample rate

        Raises:
            SynthesisError: If the model fails or produces no audio
        """
        try:
            tts = self._model(language)
            wav = tts.tts(text=text)
        except Exception as e:
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        audio = np.asarray(wav, dtype=np.float32).reshape(-1)
        if audio.size == 0:
            raise SynthesisError("Speech synthesis produced no audio")

        buffer = AudioBuffer.from_mono(np.clip(audio, -1.0, 1.0), _output_sample_rate(tts))
        logger.info(f"Synthesized {buffer.duration:.2f}s of speech for {len(text)} chars ({LanguageCode(language).value})")
        return buffer
