"""
Query Localization

Maps a country to its main language and translates search queries with
Google Translate (via deep-translator).
"""

import logging
from typing import Dict, Optional, Protocol

from deep_translator import GoogleTranslator

from ..exceptions import TranslationError

logger = logging.getLogger(__name__)

# country-code -> language code, for countries whose queries get translated
CC_TO_LANG: Dict[str, str] = {
    "al": "sq", "ar": "es", "at": "de", "ba": "bs", "be": "nl", "bg": "bg",
    "bo": "es", "br": "pt", "by": "ru", "ch": "de", "cl": "es", "cn": "zh-CN",
    "co": "es", "cr": "es", "cz": "cs", "de": "de", "dk": "da", "do": "es",
    "ec": "es", "ee": "et", "eg": "ar", "es": "es", "fi": "fi", "fr": "fr",
    "gr": "el", "gt": "es", "hk": "zh-TW", "hr": "hr", "hu": "hu", "id": "id",
    "il": "iw", "ir": "fa", "it": "it", "jp": "ja", "kr": "ko", "kz": "kk",
    "lt": "lt", "lu": "fr", "lv": "lv", "ma": "ar", "md": "ro", "me": "sr",
    "mk": "mk", "mx": "es", "my": "ms", "nl": "nl", "no": "no", "pe": "es",
    "pl": "pl", "pt": "pt", "py": "es", "ro": "ro", "rs": "sr", "ru": "ru",
    "sa": "ar", "se": "sv", "si": "sl", "sk": "sk", "th": "th", "tn": "ar",
    "tr": "tr", "tw": "zh-TW", "ua": "uk", "uy": "es", "ve": "es", "vn": "vi",
}


def language_for_country(country_code: str) -> str:
    """Main language of a country; "en" when unknown."""
    return CC_TO_LANG.get(country_code.lower(), "en")


class Translator(Protocol):
    def translate(self, text: str, target_language: str) -> str:
        ...


class GoogleQueryTranslator:
    """Translates text with deep-translator's GoogleTranslator."""

    def __init__(self, source_language: str = "auto"):
        self.source_language = source_language
        self._cache: Dict[str, str] = {}

    def translate(self, text: str, target_language: str) -> str:
        cache_key = f"{target_language}:{text}"
        if cache_key in self._cache:
            return self._cache[cache_key]
        try:
            translated = GoogleTranslator(source=self.source_language, target=target_language).translate(text)
        except Exception as e:
            raise TranslationError(f"Could not translate {text!r} to {target_language}: {e}") from e
        if not translated:
            raise TranslationError(f"Empty translation of {text!r} to {target_language}")
        self._cache[cache_key] = translated
        return translated


def localize_query(query: str, country_code: str, translator: Optional[Translator]) -> str:
    """
    Translate ``query`` into the country's language.

    Best effort: any failure falls back to the original query.
    """
    language = language_for_country(country_code)
    if translator is None or language == "en":
        return query
    try:
        localized = translator.translate(query, language)
    except Exception as e:
        logger.warning("Translation failed for %s (%s): %s; using original query", country_code, language, e)
        return query
    if localized != query:
        logger.info("Query translated to %s: %r", language, localized)
    return localized
