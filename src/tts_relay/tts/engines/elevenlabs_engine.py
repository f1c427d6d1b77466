"""
ElevenLabs TTS Adapter.

Requires ELEVENLABS_API_KEY. Every catalog voice is multilingual
(eleven_multilingual_v2), so the same voice serves any detected language.
The response body is the MP3 stream itself.
"""
from __future__ import annotations

from tts_relay.tts.engine import EngineAdapter, SynthResult, Voice, _catalog
from tts_relay.tts.engines.helpers import post_for_audio, require_audio

API_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
MODEL_ID = "eleven_multilingual_v2"

# Provider-accepted speed range
MIN_SPEED = 0.7
MAX_SPEED = 1.2

_RACHEL = "21m00Tcm4TlvDq8ikWAM"


class ElevenLabsEngine(EngineAdapter):
    id = "elevenlabs"
    display_name = "ElevenLabs"
    DEFAULT_VOICE = _RACHEL

    VOICES = _catalog(
        Voice(_RACHEL, "multi", "female", "Rachel"),
        Voice("pNInz6obpgDQGcFmaJgB", "multi", "male", "Adam"),
        Voice("ErXwobaYiN019PkySvjV", "multi", "male", "Antoni"),
        Voice("EXAVITQu4vr4xnSDxMaL", "multi", "female", "Bella"),
        Voice("TxGEqnHWrfWFTfGW9XjX", "multi", "male", "Josh"),
        Voice("VR6AewLTigWG4xSOukaG", "multi", "male", "Arnold"),
        Voice("AZnzlk1XvdvUeBnXmlld", "multi", "female", "Domi"),
        Voice("MF3mGyEYCl7XYWbV9V6O", "multi", "female", "Elli"),
        Voice("yoZ06aMxZJJ28mfd3POQ", "multi", "male", "Sam"),
    )

    LANGUAGE_DEFAULTS = {
        lang: _RACHEL
        for lang in ("en", "de", "es", "fr", "pt", "it", "ja", "ko", "zh", "ru",
                     "ar", "tr", "nl", "pl", "id", "vi")
    }

    def available(self) -> bool:
        return bool(self.config.elevenlabs_api_key)

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        payload = {
            "text": text,
            "model_id": MODEL_ID,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "speed": max(MIN_SPEED, min(MAX_SPEED, float(speed))),
            },
        }
        headers = {
            "xi-api-key": self.config.elevenlabs_api_key or "",
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        response = await post_for_audio(self, API_URL.format(voice_id=voice), json=payload, headers=headers)
        return SynthResult(audio=require_audio(self.id, response.content))
