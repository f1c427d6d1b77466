"""
Language Detection and Language-Aware Voice Selection.

Detection uses langdetect (a port of Google's n-gram language-detection
library) seeded for deterministic results. langdetect's own probability
is not used as confidence: confidence is bucketed by text length, since
short chat messages get near-certain probabilities on very little
evidence.

Confidence buckets (stripped length):
    < 10  -> 0.3
    < 20  -> 0.5
    < 50  -> 0.7
    < 100 -> 0.8
    else  -> 0.9

Texts shorter than 3 characters, and texts langdetect cannot classify,
resolve to English with detected=False. Results are cached by the
first 100 characters in a bounded LRU store.

Example:
    >>> detector = LanguageDetector()
    >>> detector.detect("Guten Morgen, wie geht es dir heute? Das Wetter ist sehr schön.").lang_code
    'de'
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

from tts_relay.core.config import Defaults
from tts_relay.core.logging import debug, get_logger, verbose, warn
from tts_relay.tts.cache import TinyLRUCache

if TYPE_CHECKING:
    from tts_relay.tts.engine import EngineAdapter

_LOG = get_logger("tts-relay.language")

# Deterministic detection across runs
DetectorFactory.seed = 0

MIN_DETECT_LENGTH = 3
CACHE_KEY_CHARS = 100

# langdetect emits region-qualified codes for a few languages
_CODE_ALIASES = {
    "zh-cn": "zh",
    "zh-tw": "zh",
}

LANGUAGE_NAMES: Dict[str, str] = {
    "de": "Deutsch",
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "it": "Italiano",
    "pt": "Português",
    "ja": "日本語",
    "ko": "한국어",
    "zh": "中文",
    "ru": "Русский",
    "ar": "العربية",
    "tr": "Türkçe",
    "nl": "Nederlands",
    "pl": "Polski",
    "th": "ภาษาไทย",
    "vi": "Tiếng Việt",
    "id": "Bahasa Indonesia",
}


def get_language_name(lang_code: str) -> str:
    """Display name for a language code; unknown codes are upper-cased."""
    return LANGUAGE_NAMES.get(lang_code, lang_code.upper())


def estimate_confidence(text: str) -> float:
    length = len(text.strip())
    if length < 10:
        return 0.3
    if length < 20:
        return 0.5
    if length < 50:
        return 0.7
    if length < 100:
        return 0.8
    return 0.9


@dataclass(frozen=True)
class LanguageDetectionResult:
    lang_code: str
    confidence: float
    detected: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VoiceChoice:
    """A detected (or fallback) language and the engine voice for it."""
    lang_code: str
    confidence: float
    voice_id: str
    language_name: str
    used_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_UNDETECTED = LanguageDetectionResult(lang_code="en", confidence=0.0, detected=False)


class LanguageDetector:
    """
    Cached language detector.

    Args:
        max_cache_items: LRU capacity for detection results.
    """

    def __init__(self, max_cache_items: int = Defaults.LANGUAGE_CACHE_MAX_ITEMS):
        self._cache: TinyLRUCache[LanguageDetectionResult] = TinyLRUCache(
            max_items=max_cache_items, name="language",
        )

    def detect(self, text: Optional[str]) -> LanguageDetectionResult:
        """Detect the language of text. Never raises."""
        if not text or len(text.strip()) < MIN_DETECT_LENGTH:
            return _UNDETECTED

        key = text[:CACHE_KEY_CHARS]
        cached = self._cache.get(key)
        if cached is not None:
            debug(_LOG, "cache_hit", lang=cached.lang_code)
            return cached

        try:
            candidates = detect_langs(text)
        except LangDetectException as exc:
            warn(_LOG, "detection_failed", error=str(exc))
            candidates = []

        if not candidates:
            result = _UNDETECTED
        else:
            code = str(candidates[0].lang).lower()
            result = LanguageDetectionResult(
                lang_code=_CODE_ALIASES.get(code, code),
                confidence=estimate_confidence(text),
                detected=True,
            )
            verbose(_LOG, "detected", lang=result.lang_code, confidence=result.confidence,
                    chars=len(text))

        self._cache.set(key, result)
        return result

    def detect_and_get_voice(
        self,
        text: Optional[str],
        engine: "EngineAdapter",
        confidence_threshold: Optional[float] = None,
        min_text_length: Optional[int] = None,
        fallback_language: Optional[str] = None,
    ) -> VoiceChoice:
        """
        Detect the language and pick the engine's default voice for it.

        When a fallback language is given, it replaces the detected one if
        detection failed, confidence is below confidence_threshold, or the
        text is shorter than min_text_length.
        """
        result = self.detect(text)
        lang = result.lang_code
        used_fallback = False

        if fallback_language:
            too_short = min_text_length is not None and len((text or "").strip()) < min_text_length
            unsure = confidence_threshold is not None and result.confidence < confidence_threshold
            if not result.detected or too_short or unsure:
                used_fallback = lang != fallback_language
                lang = fallback_language

        return VoiceChoice(
            lang_code=lang,
            confidence=result.confidence,
            voice_id=engine.default_voice_for_language(lang),
            language_name=get_language_name(lang),
            used_fallback=used_fallback,
        )

    def get_language_name(self, lang_code: str) -> str:
        return get_language_name(lang_code)

    def clear_cache(self) -> int:
        count = self._cache.clear()
        verbose(_LOG, "cache_cleared", entries=count)
        return count

    def cache_stats(self) -> Dict[str, float]:
        stats = self._cache.stats()
        return {"size": stats["size"], "max_size": stats["max_items"],
                "hits": stats["hits"], "misses": stats["misses"]}
