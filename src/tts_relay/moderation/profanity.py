"""
Multi-Language Profanity Filter.

Modes:
    off      - text passes through untouched (action "allow")
    moderate - matches are replaced (action "replace")
    strict   - any match drops the whole message (action "drop")

Replacement strategies (moderate mode):
    asterisk - "****" of the same length
    beep     - "beep"
    blank    - removed
    custom   - configured replacement string

Matching is case-insensitive and token based. A token matches a word
when it equals the word, or (for words of 4+ characters) contains it,
which catches inflections and compounds ("fucking", "Scheissegal").
Every match reports the language list it came from.

Usage:
    >>> pf = ProfanityFilter(mode="moderate")
    >>> pf.filter("well shit happens").filtered
    'well **** happens'
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from tts_relay.core.config import (
    Defaults,
    ModerationConfig,
    PROFANITY_MODES,
    REPLACEMENT_STRATEGIES,
)
from tts_relay.core.logging import debug, get_logger, verbose

_LOG = get_logger("tts-relay.profanity")

# Shorter words only match whole tokens
PARTIAL_MIN_LENGTH = 4

# Common substrings of innocent words ("reputation", "computer", "Scunthorpe")
WHOLE_ONLY = frozenset({"dick", "cunt", "twat", "puta", "puto", "pute", "hure", "coño", "spast"})

BEEP = "beep"

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_SPACES_RE = re.compile(r"[ \t]{2,}")

WORD_LISTS: Dict[str, Tuple[str, ...]] = {
    "en": (
        "fuck", "shit", "bitch", "bastard", "asshole", "dick", "cunt", "whore",
        "slut", "motherfucker", "bullshit", "wanker", "twat", "prick", "douche",
    ),
    "de": (
        "scheiße", "scheisse", "arschloch", "fotze", "hurensohn", "wichser",
        "fick", "ficken", "schlampe", "miststück", "pisser", "spast", "hure",
    ),
    "es": (
        "mierda", "puta", "puto", "cabrón", "cabron", "pendejo", "coño", "joder",
        "gilipollas", "culero", "chinga", "maricón",
    ),
    "fr": (
        "merde", "putain", "salope", "connard", "connasse", "enculé", "encule",
        "bordel", "pute", "niquer", "batard", "bâtard",
    ),
}

CUSTOM_LANGUAGE = "custom"


@dataclass(frozen=True)
class ProfanityMatch:
    """A matched token and the list entry that caught it."""
    word: str
    matched: str
    language: str
    partial: bool

    def to_dict(self) -> Dict[str, object]:
        return {"word": self.word, "matched": self.matched, "language": self.language,
                "partial": self.partial}


@dataclass
class FilterResult:
    filtered: str
    has_profanity: bool
    action: str
    matches: List[ProfanityMatch] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "filtered": self.filtered,
            "has_profanity": self.has_profanity,
            "action": self.action,
            "matches": [m.to_dict() for m in self.matches],
        }


class ProfanityFilter:
    """
    Token-based profanity filter with per-language word lists.

    Args:
        mode: off | moderate | strict
        replacement: asterisk | beep | blank | custom
        custom_replacement: Text used by the custom strategy.
        custom_words: Extra words, reported with language "custom".
    """

    def __init__(
        self,
        mode: str = Defaults.PROFANITY_FILTER,
        replacement: str = Defaults.PROFANITY_REPLACEMENT,
        custom_replacement: str = Defaults.PROFANITY_CUSTOM_REPLACEMENT,
        custom_words: Iterable[str] = (),
    ):
        self._lock = threading.Lock()
        self.mode = Defaults.PROFANITY_FILTER
        self.replacement = Defaults.PROFANITY_REPLACEMENT
        self.custom_replacement = custom_replacement
        self._custom: Tuple[str, ...] = ()
        self.set_mode(mode)
        self.set_replacement(replacement, custom_replacement)
        self.set_custom_words(custom_words)

    @classmethod
    def from_config(cls, config: ModerationConfig) -> "ProfanityFilter":
        return cls(
            mode=config.profanity_filter,
            replacement=config.replacement,
            custom_replacement=config.custom_replacement,
            custom_words=config.custom_words,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Policy
    # ─────────────────────────────────────────────────────────────────────────

    def set_mode(self, mode: str) -> None:
        if mode not in PROFANITY_MODES:
            raise ValueError(f"unknown profanity mode: {mode!r}")
        self.mode = mode

    def set_replacement(self, strategy: str, custom_replacement: Optional[str] = None) -> None:
        if strategy not in REPLACEMENT_STRATEGIES:
            raise ValueError(f"unknown replacement strategy: {strategy!r}")
        self.replacement = strategy
        if custom_replacement is not None:
            self.custom_replacement = custom_replacement

    def set_custom_words(self, words: Iterable[str]) -> None:
        cleaned = tuple(sorted({w.strip().lower() for w in words if w and w.strip()}))
        with self._lock:
            self._custom = cleaned

    def add_words(self, words: Iterable[str]) -> None:
        with self._lock:
            merged = set(self._custom)
        merged.update(w.strip().lower() for w in words if w and w.strip())
        self.set_custom_words(merged)

    # ─────────────────────────────────────────────────────────────────────────
    # Matching
    # ─────────────────────────────────────────────────────────────────────────

    def _lists_for(self, lang_code: Optional[str]) -> List[Tuple[str, Tuple[str, ...]]]:
        """Word lists to check: the message language plus English, or all."""
        if lang_code and lang_code in WORD_LISTS:
            langs = [lang_code] + (["en"] if lang_code != "en" else [])
        else:
            langs = list(WORD_LISTS)
        lists = [(lang, WORD_LISTS[lang]) for lang in langs]
        with self._lock:
            if self._custom:
                lists.append((CUSTOM_LANGUAGE, self._custom))
        return lists

    @staticmethod
    def _match_token(token: str, lists: List[Tuple[str, Tuple[str, ...]]]) -> Optional[ProfanityMatch]:
        lowered = token.lower()
        partial_hit: Optional[ProfanityMatch] = None
        for lang, words in lists:
            for word in words:
                if lowered == word:
                    return ProfanityMatch(word=token, matched=word, language=lang, partial=False)
                if (partial_hit is None and len(word) >= PARTIAL_MIN_LENGTH
                        and word not in WHOLE_ONLY and word in lowered):
                    partial_hit = ProfanityMatch(word=token, matched=word, language=lang, partial=True)
        return partial_hit

    def find_matches(self, text: str, lang_code: Optional[str] = None) -> List[ProfanityMatch]:
        lists = self._lists_for(lang_code)
        matches = []
        for m in _TOKEN_RE.finditer(text or ""):
            hit = self._match_token(m.group(0), lists)
            if hit is not None:
                matches.append(hit)
        return matches

    def _replacement_for(self, token: str) -> str:
        if self.replacement == "asterisk":
            return "*" * len(token)
        if self.replacement == "beep":
            return BEEP
        if self.replacement == "custom":
            return self.custom_replacement
        return ""

    # ─────────────────────────────────────────────────────────────────────────
    # Filtering
    # ─────────────────────────────────────────────────────────────────────────

    def filter(self, text: str, lang_code: Optional[str] = None) -> FilterResult:
        """
        Apply the current policy to text.

        Args:
            text: Message text.
            lang_code: Detected message language; None checks every list.

        Returns:
            FilterResult with action "allow", "replace" or "drop".
        """
        text = text or ""
        if self.mode == "off":
            return FilterResult(filtered=text, has_profanity=False, action="allow")

        lists = self._lists_for(lang_code)
        matches: List[ProfanityMatch] = []

        def _sub(m: "re.Match[str]") -> str:
            hit = self._match_token(m.group(0), lists)
            if hit is None:
                return m.group(0)
            matches.append(hit)
            return self._replacement_for(m.group(0))

        replaced = _TOKEN_RE.sub(_sub, text)

        if not matches:
            return FilterResult(filtered=text, has_profanity=False, action="allow")

        if self.mode == "strict":
            verbose(_LOG, "dropped", matches=len(matches),
                    languages=",".join(sorted({m.language for m in matches})))
            return FilterResult(filtered="", has_profanity=True, action="drop", matches=matches)

        if self.replacement == "blank":
            replaced = _SPACES_RE.sub(" ", replaced).strip()
        debug(_LOG, "replaced", matches=len(matches), strategy=self.replacement)
        return FilterResult(filtered=replaced, has_profanity=True, action="replace", matches=matches)

    def stats(self) -> Dict[str, object]:
        with self._lock:
            custom = len(self._custom)
        return {
            "mode": self.mode,
            "replacement": self.replacement,
            "languages": sorted(WORD_LISTS),
            "words": {lang: len(words) for lang, words in WORD_LISTS.items()},
            "custom_words": custom,
        }
