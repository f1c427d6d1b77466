"""
Engine Adapter Contract, Error Kinds and Registry.

This module provides:
    - EngineAdapter: Base class every synthesis provider implements
    - Voice: Catalog entry (language, gender, label)
    - SynthResult: Audio bytes plus MIME type
    - ErrorKind: Classification of provider failures
    - EngineRegistry: id -> adapter lookup used by the dispatcher
    - create_engines(): Factory building the registry from configuration

Adapter Contract:
    synthesize(text, voice, speed) -> SynthResult   (async, raises EngineFailure)
    voices()                       -> {voice_id: Voice}
    default_voice_for_language(l)  -> voice_id
    available()                    -> bool          (credentials present)

Implementing a New Engine:
    1. Create engines/<name>_engine.py
    2. Inherit from EngineAdapter, set id/display_name/VOICES/LANGUAGE_DEFAULTS
    3. Implement available() and synthesize()
    4. Register in _create_engine() below
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

import httpx

from tts_relay.core.config import ENGINE_IDS, EnginesConfig
from tts_relay.core.logging import get_logger, info


class ErrorKind(str, Enum):
    """Classification of a provider failure."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    QUOTA = "quota"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    SERVER = "server"
    EMPTY_AUDIO = "empty_audio"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Transient kinds are retried on the same engine before moving on."""
        return self in (ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER)


@dataclass(frozen=True)
class Voice:
    """
    A voice in an engine's catalog.

    Attributes:
        voice_id: Provider voice identifier.
        lang: ISO 639-1 code, or "multi" for multilingual voices.
        gender: "male" / "female" / "neutral".
        label: Human-readable name.
    """
    voice_id: str
    lang: str
    gender: str
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.voice_id, "lang": self.lang, "gender": self.gender, "label": self.label}


@dataclass
class SynthResult:
    """
    Result of a synthesis call.

    Attributes:
        audio: Encoded audio bytes (MP3 for every bundled provider).
        mime_type: MIME type of the audio.
    """
    audio: bytes
    mime_type: str = "audio/mpeg"


def _catalog(*voices: Voice) -> Dict[str, Voice]:
    return {v.voice_id: v for v in voices}


class EngineAdapter:
    """
    Base class for synthesis providers.

    Subclasses declare a static voice catalog and a language -> voice
    table, and implement available() and synthesize(). Adapters are
    stateless apart from configuration and a shared httpx client.

    Attributes:
        id: Engine identifier used in configuration and fallback chains.
        display_name: Human-readable provider name.
        requires_credentials: Whether available() depends on an API key.
        VOICES: voice_id -> Voice catalog.
        LANGUAGE_DEFAULTS: language code -> voice_id.
        DEFAULT_VOICE: Voice used when no language default applies.
    """
    id: str = "base"
    display_name: str = "Base"
    requires_credentials: bool = True
    VOICES: Dict[str, Voice] = {}
    LANGUAGE_DEFAULTS: Dict[str, str] = {}
    DEFAULT_VOICE: str = ""

    def __init__(self, config: EnginesConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.logger = get_logger(f"tts-relay.engine.{self.id}")
        self._client = client
        self._owns_client = client is None

    # ─────────────────────────────────────────────────────────────────────────
    # Catalog
    # ─────────────────────────────────────────────────────────────────────────

    def voices(self) -> Dict[str, Voice]:
        return dict(self.VOICES)

    def has_voice(self, voice_id: Optional[str]) -> bool:
        return bool(voice_id) and voice_id in self.VOICES

    @property
    def default_voice(self) -> str:
        return self.DEFAULT_VOICE

    def default_voice_for_language(self, lang: Optional[str]) -> str:
        """Voice for a language code, or the engine default."""
        if lang and lang in self.LANGUAGE_DEFAULTS:
            return self.LANGUAGE_DEFAULTS[lang]
        return self.DEFAULT_VOICE

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis
    # ─────────────────────────────────────────────────────────────────────────

    def available(self) -> bool:
        """Whether the engine has what it needs to run (e.g. credentials)."""
        raise NotImplementedError

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        """
        Synthesize text with a voice from this engine's catalog.

        Raises:
            EngineFailure: Classified provider failure.
        """
        raise NotImplementedError

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.performance.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def describe(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.display_name,
            "available": self.available(),
            "requires_credentials": self.requires_credentials,
            "default_voice": self.default_voice,
            "voice_count": len(self.VOICES),
            "languages": sorted(self.LANGUAGE_DEFAULTS),
        }


class EngineRegistry:
    """
    id -> EngineAdapter lookup.

    The registry is the single place the dispatcher, the service and the
    API resolve engines from. Unknown ids resolve to None.
    """

    def __init__(self, adapters: Iterable[EngineAdapter] = ()):
        self._engines: Dict[str, EngineAdapter] = {}
        self._lock = threading.Lock()
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: EngineAdapter) -> None:
        with self._lock:
            self._engines[adapter.id] = adapter

    def get(self, engine_id: Optional[str]) -> Optional[EngineAdapter]:
        if not engine_id:
            return None
        return self._engines.get(engine_id)

    def __getitem__(self, engine_id: str) -> EngineAdapter:
        return self._engines[engine_id]

    def __contains__(self, engine_id: str) -> bool:
        return engine_id in self._engines

    def ids(self) -> List[str]:
        return list(self._engines)

    def all(self) -> List[EngineAdapter]:
        return list(self._engines.values())

    def available_ids(self) -> List[str]:
        return [e.id for e in self._engines.values() if e.available()]

    def update_config(self, config: EnginesConfig) -> None:
        """Point every adapter at new engine configuration (e.g. rotated keys)."""
        for adapter in self.all():
            adapter.config = config

    def describe(self) -> List[Dict[str, object]]:
        return [e.describe() for e in self._engines.values()]

    async def aclose(self) -> None:
        for adapter in self.all():
            await adapter.aclose()


def _create_engine(engine_id: str, config: EnginesConfig, client: Optional[httpx.AsyncClient]) -> EngineAdapter:
    """
    Create one engine adapter (lazy imports keep unused adapters unloaded).

    Raises:
        ValueError: If engine_id is unknown.
    """
    if engine_id == "speechify":
        from tts_relay.tts.engines.speechify_engine import SpeechifyEngine
        return SpeechifyEngine(config, client)

    if engine_id == "elevenlabs":
        from tts_relay.tts.engines.elevenlabs_engine import ElevenLabsEngine
        return ElevenLabsEngine(config, client)

    if engine_id == "google":
        from tts_relay.tts.engines.google_engine import GoogleEngine
        return GoogleEngine(config, client)

    if engine_id == "tiktok":
        from tts_relay.tts.engines.tiktok_engine import TikTokEngine
        return TikTokEngine(config, client)

    raise ValueError(f"Unknown engine: {engine_id}")


def create_engines(
    config: EnginesConfig,
    client: Optional[httpx.AsyncClient] = None,
    engine_ids: Iterable[str] = ENGINE_IDS,
) -> EngineRegistry:
    """
    Build the registry of bundled provider adapters.

    Args:
        config: Engine configuration (keys, performance mode).
        client: Optional shared httpx.AsyncClient (tests pass a MockTransport client).
        engine_ids: Which engines to register.
    """
    registry = EngineRegistry(_create_engine(engine_id, config, client) for engine_id in engine_ids)
    info(get_logger("tts-relay.engine"), "engines_registered",
         engines=",".join(registry.ids()), available=",".join(registry.available_ids()))
    return registry
