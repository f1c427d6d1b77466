"""
Provider Adapter Implementations.

Each provider is an EngineAdapter subclass with a static voice catalog
and a language -> voice table:

    - SpeechifyEngine: Speechify API (SPEECHIFY_API_KEY)
    - ElevenLabsEngine: ElevenLabs multilingual voices (ELEVENLABS_API_KEY)
    - GoogleEngine: Google Cloud Wavenet voices (GOOGLE_TTS_API_KEY)
    - TikTokEngine: Credential-free, always available

Classes are imported lazily on first attribute access. Use
tts_relay.tts.engine.create_engines() to build the registry.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "SpeechifyEngine",
    "ElevenLabsEngine",
    "GoogleEngine",
    "TikTokEngine",
]


def __getattr__(name: str):
    if name == "SpeechifyEngine":
        from tts_relay.tts.engines.speechify_engine import SpeechifyEngine
        return SpeechifyEngine
    if name == "ElevenLabsEngine":
        from tts_relay.tts.engines.elevenlabs_engine import ElevenLabsEngine
        return ElevenLabsEngine
    if name == "GoogleEngine":
        from tts_relay.tts.engines.google_engine import GoogleEngine
        return GoogleEngine
    if name == "TikTokEngine":
        from tts_relay.tts.engines.tiktok_engine import TikTokEngine
        return TikTokEngine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if TYPE_CHECKING:
    from tts_relay.tts.engines.elevenlabs_engine import ElevenLabsEngine
    from tts_relay.tts.engines.google_engine import GoogleEngine
    from tts_relay.tts.engines.speechify_engine import SpeechifyEngine
    from tts_relay.tts.engines.tiktok_engine import TikTokEngine
