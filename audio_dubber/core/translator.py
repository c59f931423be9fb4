import logging
from typing import List, Optional, Tuple

import argostranslate.package
import argostranslate.translate

from ..errors import TranslationError
from ..languages import LanguageCode, models_for
from .registry import ModelRegistry, default_registry

logger = logging.getLogger(__name__)

PIVOT_LANGUAGE = "en"


class Translator:
    """Translation collaborator: source-language text in, target-language text out."""

    def translate(self, text: str, source: LanguageCode, target: LanguageCode) -> str:
        raise NotImplementedError


def _package_pairs(src: str, tgt: str) -> List[Tuple[str, str]]:
    if PIVOT_LANGUAGE in (src, tgt):
        return [(src, tgt)]
    # Argos has few direct non-English pairs; fall back to pivoting through English
    return [(src, tgt), (src, PIVOT_LANGUAGE), (PIVOT_LANGUAGE, tgt)]


def _install_packages(src: str, tgt: str) -> None:
    """Install the argos packages needed for src -> tgt if they are not already present."""
    installed = {(p.from_code, p.to_code) for p in argostranslate.package.get_installed_packages()}
    wanted = [pair for pair in _package_pairs(src, tgt) if pair not in installed]
    if not wanted or (src, tgt) in installed:
        return

    try:
        argostranslate.package.update_package_index()
        available = argostranslate.package.get_available_packages()
    except Exception as e:
        logger.warning(f"Could not update translation package index: {e}")
        return

    for from_code, to_code in wanted:
        package = next((p for p in available if p.from_code == from_code and p.to_code == to_code), None)
        if package is None:
            continue
        logger.info(f"Installing translation package {from_code} -> {to_code}")
        argostranslate.package.install_from_path(package.download())
        if (from_code, to_code) == (src, tgt):
            # A direct package makes the pivot packages unnecessary
            return


def _load_translation(src: str, tgt: str):
    _install_packages(src, tgt)
    languages = argostranslate.translate.get_installed_languages()
    from_lang = next((lang for lang in languages if lang.code == src), None)
    to_lang = next((lang for lang in languages if lang.code == tgt), None)
    if from_lang is None or to_lang is None:
        raise TranslationError(f"No translation model installed for {src} -> {tgt}")
    translation = from_lang.get_translation(to_lang)
    if translation is None:
        raise TranslationError(f"No translation path available for {src} -> {tgt}")
    return translation


class ArgosTranslator(Translator):
    """Offline translation with Argos Translate, one cached model per language pair."""

    def __init__(self, registry: Optional[ModelRegistry] = None):
        self.registry = registry or default_registry

    def _translation(self, src: str, tgt: str):
        return self.registry.get(f"argos:{src}->{tgt}", lambda: _load_translation(src, tgt))

    def translate(self, text: str, source: LanguageCode, target: LanguageCode) -> str:
        """
        Translate text between two supported languages.

        Args:
            text: Source-language text
            source: Source language
            target: Target language

        Returns:
            Translated text, or the input unchanged when source and target match

        Raises:
            TranslationError: If the model fails or returns empty output
        """
        src = models_for(source).translation_code
        tgt = models_for(target).translation_code
        if src == tgt:
            logger.info(f"Source and target language are both '{tgt}', skipping translation")
            return text

        try:
            translated = self._translation(src, tgt).translate(text)
        except TranslationError:
            raise
        except Exception as e:
            raise TranslationError(f"Translation failed: {e}") from e

        translated = (translated or "").strip()
        if not translated:
            raise TranslationError("Translation failed to produce output")

        logger.info(f"Translated {len(text)} chars {src} -> {tgt}: '{text[:50]}...' -> '{translated[:50]}...'")
        return translated
