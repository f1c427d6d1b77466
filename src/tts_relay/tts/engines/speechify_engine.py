"""
Speechify TTS Adapter.

Requires SPEECHIFY_API_KEY. English text uses the simba-english model;
any other language is sent to the multilingual model with a voice that
supports it.
"""
from __future__ import annotations

from tts_relay.tts.engine import EngineAdapter, SynthResult, Voice, _catalog
from tts_relay.tts.engines.helpers import decode_base64_audio, post_for_audio

API_URL = "https://api.sws.speechify.com/v1/audio/speech"
MULTILINGUAL_VOICE = "henry"


class SpeechifyEngine(EngineAdapter):
    id = "speechify"
    display_name = "Speechify"
    DEFAULT_VOICE = "george"

    VOICES = _catalog(
        Voice("george", "en", "male", "George"),
        Voice("henry", "en", "male", "Henry"),
        Voice("carly", "en", "female", "Carly"),
        Voice("kristy", "en", "female", "Kristy"),
        Voice("oliver", "en", "male", "Oliver"),
        Voice("lisa", "en", "female", "Lisa"),
    )

    LANGUAGE_DEFAULTS = {
        "en": "george",
        "de": MULTILINGUAL_VOICE,
        "es": MULTILINGUAL_VOICE,
        "fr": MULTILINGUAL_VOICE,
        "pt": MULTILINGUAL_VOICE,
        "it": MULTILINGUAL_VOICE,
        "nl": MULTILINGUAL_VOICE,
        "pl": MULTILINGUAL_VOICE,
    }

    def available(self) -> bool:
        return bool(self.config.speechify_api_key)

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        payload = {
            "input": text,
            "voice_id": voice,
            "audio_format": "mp3",
            "model": "simba-english",
        }
        if voice == MULTILINGUAL_VOICE:
            # Multilingual model detects the language itself
            payload["model"] = "simba-multilingual"
        else:
            payload["language"] = "en"
        headers = {
            "Authorization": f"Bearer {self.config.speechify_api_key}",
            "Content-Type": "application/json",
        }
        response = await post_for_audio(self, API_URL, json=payload, headers=headers)
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        return SynthResult(audio=decode_base64_audio(self.id, body.get("audio_data")))
