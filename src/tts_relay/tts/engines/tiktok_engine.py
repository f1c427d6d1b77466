"""
TikTok TTS Adapter.

Credential-free provider: always available, so every fallback chain can
end on it. A TikTok ``sessionid`` cookie is sent when configured
(TIKTOK_SESSION_ID), which some endpoints require for reliable service.

The adapter rotates across three regional endpoints. A failed endpoint
moves the rotation forward so the next call starts on a different host.

Response format:
    {"status_code": 0, "data": {"v_str": "<base64 mp3>"}}
    {"status_code": 1, "status_msg": "..."}          (error)
"""
from __future__ import annotations

import threading
from typing import List

from tts_relay.core.errors import EngineFailure
from tts_relay.core.logging import verbose, warn
from tts_relay.tts.engine import EngineAdapter, ErrorKind, SynthResult, Voice, _catalog
from tts_relay.tts.engines.helpers import decode_base64_audio, post_for_audio

ENDPOINTS: List[str] = [
    "https://api16-normal-useast5.us.tiktokv.com/media/api/text/speech/invoke",
    "https://api22-normal-c-alisg.tiktokv.com/media/api/text/speech/invoke",
    "https://api16-normal-c-useast2a.tiktokv.com/media/api/text/speech/invoke",
]

USER_AGENT = (
    "com.zhiliaoapp.musically/2023400040 (Linux; U; Android 13; en_US; Pixel 7; "
    "Build/TQ3A.230805.001; tt-ok/3.12.13.4)"
)

# Provider limit per request
MAX_TEXT_LENGTH = 300


class TikTokEngine(EngineAdapter):
    id = "tiktok"
    display_name = "TikTok"
    requires_credentials = False
    DEFAULT_VOICE = "en_us_001"

    VOICES = _catalog(
        # English characters
        Voice("en_us_ghostface", "en", "male", "Ghostface"),
        Voice("en_us_chewbacca", "en", "male", "Chewbacca"),
        Voice("en_us_c3po", "en", "male", "C3PO"),
        Voice("en_us_stitch", "en", "male", "Stitch"),
        Voice("en_us_stormtrooper", "en", "male", "Stormtrooper"),
        Voice("en_us_rocket", "en", "male", "Rocket"),
        # English standard
        Voice("en_male_narration", "en", "male", "Male Narrator"),
        Voice("en_male_funny", "en", "male", "Male Funny"),
        Voice("en_female_emotional", "en", "female", "Female Emotional"),
        Voice("en_female_samc", "en", "female", "Female Friendly"),
        Voice("en_us_001", "en", "female", "US Female 1"),
        Voice("en_us_002", "en", "female", "US Female 2"),
        Voice("en_us_006", "en", "male", "US Male 1"),
        Voice("en_us_007", "en", "male", "US Male 2"),
        Voice("en_us_009", "en", "male", "US Male 3"),
        Voice("en_us_010", "en", "male", "US Male 4"),
        Voice("en_uk_001", "en", "male", "UK Male 1"),
        Voice("en_uk_003", "en", "female", "UK Female 1"),
        Voice("en_au_001", "en", "female", "Australian Female"),
        Voice("en_au_002", "en", "male", "Australian Male"),
        # Other languages
        Voice("de_001", "de", "male", "Deutsch Männlich"),
        Voice("de_002", "de", "female", "Deutsch Weiblich"),
        Voice("es_002", "es", "male", "Español Male"),
        Voice("es_mx_002", "es", "female", "Español MX Female"),
        Voice("fr_001", "fr", "male", "Français Male"),
        Voice("fr_002", "fr", "female", "Français Female"),
        Voice("pt_female", "pt", "female", "Português Female"),
        Voice("br_003", "pt", "female", "Português BR Female"),
        Voice("br_004", "pt", "male", "Português BR Male"),
        Voice("br_005", "pt", "female", "Português BR Friendly"),
        Voice("it_male_m18", "it", "male", "Italiano Male"),
        Voice("jp_001", "ja", "female", "日本語 Female"),
        Voice("jp_003", "ja", "male", "日本語 Male"),
        Voice("jp_005", "ja", "female", "日本語 Energetic"),
        Voice("jp_006", "ja", "male", "日本語 Calm"),
        Voice("kr_002", "ko", "male", "한국어 Male"),
        Voice("kr_003", "ko", "female", "한국어 Female"),
        Voice("kr_004", "ko", "female", "한국어 Bright"),
        Voice("id_001", "id", "female", "Bahasa Indonesia Female"),
        Voice("nl_001", "nl", "male", "Nederlands Male"),
        Voice("pl_001", "pl", "female", "Polski Female"),
        Voice("ru_female", "ru", "female", "Русский Female"),
        Voice("tr_female", "tr", "female", "Türkçe Female"),
        Voice("vi_female", "vi", "female", "Tiếng Việt Female"),
        Voice("th_female", "th", "female", "ภาษาไทย Female"),
        Voice("ar_male", "ar", "male", "العربية Male"),
        Voice("zh_CN_female", "zh", "female", "中文 Female"),
        Voice("zh_CN_male", "zh", "male", "中文 Male"),
    )

    LANGUAGE_DEFAULTS = {
        "de": "de_002",
        "en": "en_us_001",
        "es": "es_002",
        "fr": "fr_002",
        "pt": "br_003",
        "it": "it_male_m18",
        "ja": "jp_001",
        "ko": "kr_003",
        "zh": "zh_CN_female",
        "ru": "ru_female",
        "ar": "ar_male",
        "tr": "tr_female",
        "vi": "vi_female",
        "th": "th_female",
        "nl": "nl_001",
        "pl": "pl_001",
        "id": "id_001",
    }

    def __init__(self, config, client=None):
        super().__init__(config, client)
        self._endpoint_index = 0
        self._endpoint_lock = threading.Lock()

    def available(self) -> bool:
        return True

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": USER_AGENT,
            "Accept": "*/*",
        }
        if self.config.tiktok_session_id:
            headers["Cookie"] = f"sessionid={self.config.tiktok_session_id}"
        return headers

    def _endpoint_order(self) -> List[str]:
        with self._endpoint_lock:
            start = self._endpoint_index
        return ENDPOINTS[start:] + ENDPOINTS[:start]

    def _advance(self) -> None:
        with self._endpoint_lock:
            self._endpoint_index = (self._endpoint_index + 1) % len(ENDPOINTS)

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        if len(text) > MAX_TEXT_LENGTH:
            text = text[:MAX_TEXT_LENGTH]

        form = {
            "text_speaker": voice,
            "req_text": text,
            "speaker_map_type": "0",
            "aid": "1233",
        }

        last = EngineFailure(self.id, ErrorKind.NETWORK, "no endpoint answered")
        for url in self._endpoint_order():
            try:
                response = await post_for_audio(self, url, data=form, headers=self._headers())
                return SynthResult(audio=self._extract_audio(response.json()))
            except EngineFailure as exc:
                last = exc
                warn(self.logger, "endpoint_failed", engine=self.id, kind=exc.kind.value, endpoint=url)
                # Credentials and bad input fail the same way on every host
                if exc.kind in (ErrorKind.AUTH, ErrorKind.INVALID_REQUEST):
                    raise
                self._advance()
            except ValueError as exc:
                # Body was not JSON
                last = EngineFailure(self.id, ErrorKind.SERVER, f"invalid response: {exc}")
                self._advance()

        verbose(self.logger, "all_endpoints_failed", engine=self.id, endpoints=len(ENDPOINTS))
        raise last

    def _extract_audio(self, data: dict) -> bytes:
        if not isinstance(data, dict):
            raise EngineFailure(self.id, ErrorKind.SERVER, "unexpected response body")

        if data.get("status_code") == 0:
            payload = data.get("data")
            if isinstance(payload, dict):
                return decode_base64_audio(self.id, payload.get("v_str"))
            return decode_base64_audio(self.id, payload)

        message = str(data.get("status_msg") or "unknown provider error")
        lowered = message.lower()
        if "session" in lowered or "login" in lowered:
            kind = ErrorKind.AUTH
        elif "too long" in lowered or "invalid" in lowered:
            kind = ErrorKind.INVALID_REQUEST
        else:
            kind = ErrorKind.SERVER
        raise EngineFailure(self.id, kind, f"TikTok API error: {message}")
