"""
Supported languages and the single lookup table that maps them to models.
"""

import logging
from enum import Enum
from typing import Dict, NamedTuple, Optional

from .config import DEFAULT_SOURCE_LANGUAGE
from .errors import UnsupportedLanguageError

logger = logging.getLogger(__name__)


class LanguageCode(str, Enum):
    EN = "en"
    ES = "es"
    FR = "fr"
    DE = "de"
    IT = "it"
    PT = "pt"


class LanguageModels(NamedTuple):
    translation_code: str
    tts_model: str


LANGUAGE_MODELS: Dict[LanguageCode, LanguageModels] = {
    LanguageCode.EN: LanguageModels("en", "tts_models/en/ljspeech/vits"),
    LanguageCode.ES: LanguageModels("es", "tts_models/es/css10/vits"),
    LanguageCode.FR: LanguageModels("fr", "tts_models/fr/css10/vits"),
    LanguageCode.DE: LanguageModels("de", "tts_models/de/thorsten/vits"),
    LanguageCode.IT: LanguageModels("it", "tts_models/it/mai_female/vits"),
    LanguageCode.PT: LanguageModels("pt", "tts_models/pt/cv/vits"),
}


def supported_languages():
    return [code.value for code in LanguageCode]


def is_supported_language(value) -> bool:
    return isinstance(value, str) and value in supported_languages()


def parse_target_language(value) -> LanguageCode:
    """
    Validate a user-requested target language.

    Raises:
        UnsupportedLanguageError: If the value is not one of the supported codes
    """
    if not is_supported_language(value):
        raise UnsupportedLanguageError(f"Unsupported target language: {value!r}")
    return LanguageCode(value)


def resolve_source_language(detected: Optional[str]) -> LanguageCode:
    """
    Map a language detected by ASR onto the supported set.

    Unlike the target language, an unknown detection is not an error: it falls
    back to the default source language.
    """
    if detected:
        code = detected.strip().lower()
        if is_supported_language(code):
            return LanguageCode(code)
        logger.warning(f"Detected language '{detected}' is not supported, "
                       f"falling back to '{DEFAULT_SOURCE_LANGUAGE}'")
    return LanguageCode(DEFAULT_SOURCE_LANGUAGE)


def models_for(language: LanguageCode) -> LanguageModels:
    return LANGUAGE_MODELS[LanguageCode(language)]
