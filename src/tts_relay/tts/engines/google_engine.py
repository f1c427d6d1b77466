"""
Google Cloud Text-to-Speech Adapter.

Requires GOOGLE_TTS_API_KEY (sent as the ``key`` query parameter).
Voice names encode their locale (``de-DE-Wavenet-B``); the first two
segments become the request languageCode.
"""
from __future__ import annotations

from tts_relay.tts.engine import EngineAdapter, SynthResult, Voice, _catalog
from tts_relay.tts.engines.helpers import decode_base64_audio, post_for_audio

API_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


def language_code(voice_name: str) -> str:
    """'de-DE-Wavenet-B' -> 'de-DE'."""
    parts = voice_name.split("-")
    if len(parts) >= 2:
        return "-".join(parts[:2])
    return "en-US"


class GoogleEngine(EngineAdapter):
    id = "google"
    display_name = "Google Cloud TTS"
    DEFAULT_VOICE = "en-US-Wavenet-D"

    VOICES = _catalog(
        Voice("en-US-Wavenet-D", "en", "male", "US English Male"),
        Voice("en-US-Wavenet-C", "en", "female", "US English Female"),
        Voice("en-GB-Wavenet-B", "en", "male", "UK English Male"),
        Voice("de-DE-Wavenet-B", "de", "male", "Deutsch Männlich"),
        Voice("de-DE-Wavenet-C", "de", "female", "Deutsch Weiblich"),
        Voice("es-ES-Wavenet-B", "es", "male", "Español Male"),
        Voice("fr-FR-Wavenet-B", "fr", "male", "Français Male"),
        Voice("fr-FR-Wavenet-C", "fr", "female", "Français Female"),
        Voice("it-IT-Wavenet-A", "it", "female", "Italiano Female"),
        Voice("pt-BR-Wavenet-A", "pt", "female", "Português BR Female"),
        Voice("ja-JP-Wavenet-B", "ja", "female", "日本語 Female"),
        Voice("ko-KR-Wavenet-A", "ko", "female", "한국어 Female"),
        Voice("nl-NL-Wavenet-B", "nl", "male", "Nederlands Male"),
        Voice("pl-PL-Wavenet-A", "pl", "female", "Polski Female"),
        Voice("ru-RU-Wavenet-B", "ru", "male", "Русский Male"),
        Voice("tr-TR-Wavenet-B", "tr", "male", "Türkçe Male"),
    )

    LANGUAGE_DEFAULTS = {
        "en": "en-US-Wavenet-D",
        "de": "de-DE-Wavenet-C",
        "es": "es-ES-Wavenet-B",
        "fr": "fr-FR-Wavenet-C",
        "it": "it-IT-Wavenet-A",
        "pt": "pt-BR-Wavenet-A",
        "ja": "ja-JP-Wavenet-B",
        "ko": "ko-KR-Wavenet-A",
        "nl": "nl-NL-Wavenet-B",
        "pl": "pl-PL-Wavenet-A",
        "ru": "ru-RU-Wavenet-B",
        "tr": "tr-TR-Wavenet-B",
    }

    def available(self) -> bool:
        return bool(self.config.google_api_key)

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        payload = {
            "input": {"text": text},
            "voice": {"languageCode": language_code(voice), "name": voice},
            "audioConfig": {"audioEncoding": "MP3", "speakingRate": float(speed)},
        }
        response = await post_for_audio(
            self, API_URL, params={"key": self.config.google_api_key}, json=payload,
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        return SynthResult(audio=decode_base64_audio(self.id, body.get("audioContent")))
