"""
Tests for provider adapters and their helpers.

Providers are exercised against httpx.MockTransport, so no network is
touched. Tests cover:
- Status / exception classification
- Base64 decoding edge cases
- Request shape and response parsing per provider
- Availability from credentials
- TikTok endpoint rotation
- create_engines() registry
"""
import asyncio
import base64
import json

import httpx
import pytest

from tts_relay.core.config import EnginesConfig
from tts_relay.core.errors import EngineFailure, EngineUnavailableError
from tts_relay.tts.engine import ErrorKind, create_engines
from tts_relay.tts.engines import tiktok_engine
from tts_relay.tts.engines.elevenlabs_engine import ElevenLabsEngine
from tts_relay.tts.engines.google_engine import GoogleEngine, language_code
from tts_relay.tts.engines.helpers import (
    classify_exception,
    classify_status,
    decode_base64_audio,
    failure_from_exception,
)
from tts_relay.tts.engines.speechify_engine import SpeechifyEngine
from tts_relay.tts.engines.tiktok_engine import TikTokEngine

MP3 = b"ID3fake-mp3-bytes"
MP3_B64 = base64.b64encode(MP3).decode()


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def run(coro):
    return asyncio.run(coro)


class TestClassification:

    @pytest.mark.parametrize("status,kind", [
        (401, ErrorKind.AUTH),
        (403, ErrorKind.AUTH),
        (402, ErrorKind.QUOTA),
        (429, ErrorKind.QUOTA),
        (404, ErrorKind.NOT_FOUND),
        (400, ErrorKind.INVALID_REQUEST),
        (422, ErrorKind.INVALID_REQUEST),
        (500, ErrorKind.SERVER),
        (503, ErrorKind.SERVER),
        (418, ErrorKind.UNKNOWN),
    ])
    def test_status(self, status, kind):
        assert classify_status(status) == kind

    def test_exceptions(self):
        assert classify_exception(httpx.ReadTimeout("slow")) == ErrorKind.TIMEOUT
        assert classify_exception(httpx.ConnectError("refused")) == ErrorKind.NETWORK
        assert classify_exception(RuntimeError("?")) == ErrorKind.UNKNOWN

    def test_retryable_kinds(self):
        assert {k for k in ErrorKind if k.retryable} == {
            ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER,
        }

    def test_failure_from_status_error(self):
        request = httpx.Request("POST", "https://example.invalid")
        response = httpx.Response(429, text="slow down", request=request)
        exc = httpx.HTTPStatusError("429", request=request, response=response)
        failure = failure_from_exception("google", exc)
        assert failure.kind == ErrorKind.QUOTA
        assert failure.status_code == 429
        assert "slow down" in failure.message

    def test_failure_passthrough(self):
        original = EngineFailure("google", ErrorKind.AUTH, "bad key")
        assert failure_from_exception("google", original) is original


class TestDecode:

    def test_valid(self):
        assert decode_base64_audio("x", MP3_B64) == MP3

    @pytest.mark.parametrize("value", [None, "", 123])
    def test_missing_is_empty_audio(self, value):
        with pytest.raises(EngineFailure) as exc_info:
            decode_base64_audio("x", value)
        assert exc_info.value.kind == ErrorKind.EMPTY_AUDIO


class TestSpeechify:

    def test_unavailable_without_key(self):
        assert SpeechifyEngine(EnginesConfig()).available() is False

    def test_refuses_to_call_without_key(self):
        def handler(request):
            raise AssertionError("provider must not be called")

        engine = SpeechifyEngine(EnginesConfig(), mock_client(handler))
        with pytest.raises(EngineUnavailableError):
            run(engine.synthesize("hello", "george"))

    def test_english_request(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"audio_data": MP3_B64})

        engine = SpeechifyEngine(EnginesConfig(speechify_api_key="sk"), mock_client(handler))
        result = run(engine.synthesize("hello", "george"))
        assert result.audio == MP3
        assert seen["auth"] == "Bearer sk"
        assert seen["body"]["model"] == "simba-english"
        assert seen["body"]["language"] == "en"

    def test_multilingual_voice(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"audio_data": MP3_B64})

        engine = SpeechifyEngine(EnginesConfig(speechify_api_key="sk"), mock_client(handler))
        run(engine.synthesize("hallo", engine.default_voice_for_language("de")))
        assert seen["body"]["model"] == "simba-multilingual"
        assert "language" not in seen["body"]

    def test_quota(self):
        engine = SpeechifyEngine(
            EnginesConfig(speechify_api_key="sk"),
            mock_client(lambda request: httpx.Response(402, json={"error": "quota"})),
        )
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hello", "george"))
        assert exc_info.value.kind == ErrorKind.QUOTA
        assert exc_info.value.status_code == 402

    def test_missing_audio(self):
        engine = SpeechifyEngine(
            EnginesConfig(speechify_api_key="sk"),
            mock_client(lambda request: httpx.Response(200, json={})),
        )
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hello", "george"))
        assert exc_info.value.kind == ErrorKind.EMPTY_AUDIO


class TestElevenLabs:

    def test_binary_body_and_speed_clamp(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=MP3)

        engine = ElevenLabsEngine(EnginesConfig(elevenlabs_api_key="xi"), mock_client(handler))
        result = run(engine.synthesize("hi", engine.default_voice, speed=3.0))
        assert result.audio == MP3
        assert seen["url"].endswith(engine.default_voice)
        assert seen["key"] == "xi"
        assert seen["body"]["voice_settings"]["speed"] == 1.2

    def test_empty_body(self):
        engine = ElevenLabsEngine(
            EnginesConfig(elevenlabs_api_key="xi"),
            mock_client(lambda request: httpx.Response(200, content=b"")),
        )
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hi", engine.default_voice))
        assert exc_info.value.kind == ErrorKind.EMPTY_AUDIO

    def test_auth(self):
        engine = ElevenLabsEngine(
            EnginesConfig(elevenlabs_api_key="xi"),
            mock_client(lambda request: httpx.Response(401)),
        )
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hi", engine.default_voice))
        assert exc_info.value.kind == ErrorKind.AUTH


class TestGoogle:

    def test_language_code(self):
        assert language_code("de-DE-Wavenet-C") == "de-DE"
        assert language_code("weird") == "en-US"

    def test_request(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params["key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"audioContent": MP3_B64})

        engine = GoogleEngine(EnginesConfig(google_api_key="g"), mock_client(handler))
        result = run(engine.synthesize("hallo", "de-DE-Wavenet-C", speed=1.25))
        assert result.audio == MP3
        assert seen["key"] == "g"
        assert seen["body"]["voice"] == {"languageCode": "de-DE", "name": "de-DE-Wavenet-C"}
        assert seen["body"]["audioConfig"]["speakingRate"] == 1.25

    def test_server_error(self):
        engine = GoogleEngine(
            EnginesConfig(google_api_key="g"),
            mock_client(lambda request: httpx.Response(503)),
        )
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("x", engine.default_voice))
        assert exc_info.value.kind == ErrorKind.SERVER

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        engine = GoogleEngine(EnginesConfig(google_api_key="g"), mock_client(handler))
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("x", engine.default_voice))
        assert exc_info.value.kind == ErrorKind.TIMEOUT


class TestTikTok:

    def test_always_available(self):
        assert TikTokEngine(EnginesConfig()).available() is True

    def test_success_with_session_cookie(self):
        seen = {}

        def handler(request):
            seen["cookie"] = request.headers.get("Cookie")
            seen["form"] = request.content.decode()
            return httpx.Response(200, json={"status_code": 0, "data": {"v_str": MP3_B64}})

        engine = TikTokEngine(EnginesConfig(tiktok_session_id="abc"), mock_client(handler))
        result = run(engine.synthesize("hello", "en_us_001"))
        assert result.audio == MP3
        assert seen["cookie"] == "sessionid=abc"
        assert "text_speaker=en_us_001" in seen["form"]

    def test_rotates_to_next_endpoint(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if len(hosts) == 1:
                return httpx.Response(500)
            return httpx.Response(200, json={"status_code": 0, "data": {"v_str": MP3_B64}})

        engine = TikTokEngine(EnginesConfig(), mock_client(handler))
        assert run(engine.synthesize("hello", "en_us_001")).audio == MP3
        assert len(hosts) == 2
        assert hosts[0] != hosts[1]
        # The failed host is no longer first in line
        assert engine._endpoint_order()[0] == tiktok_engine.ENDPOINTS[1]

    def test_all_endpoints_fail(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status_code": 1, "status_msg": "server busy"})

        engine = TikTokEngine(EnginesConfig(), mock_client(handler))
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hello", "en_us_001"))
        assert exc_info.value.kind == ErrorKind.SERVER
        assert len(calls) == len(tiktok_engine.ENDPOINTS)

    def test_session_error_is_auth_and_not_rotated(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status_code": 1, "status_msg": "Couldn't load session"})

        engine = TikTokEngine(EnginesConfig(), mock_client(handler))
        with pytest.raises(EngineFailure) as exc_info:
            run(engine.synthesize("hello", "en_us_001"))
        assert exc_info.value.kind == ErrorKind.AUTH
        assert len(calls) == 1


class TestRegistry:

    def test_create_engines(self):
        registry = create_engines(EnginesConfig(google_api_key="g"))
        assert set(registry.ids()) == {"speechify", "elevenlabs", "google", "tiktok"}
        assert set(registry.available_ids()) == {"google", "tiktok"}
        assert registry.get("nope") is None
        assert registry.get(None) is None
        assert registry["google"].id == "google"
        with pytest.raises(KeyError):
            registry["nope"]

    def test_describe(self):
        registry = create_engines(EnginesConfig(), engine_ids=["tiktok"])
        [entry] = registry.describe()
        assert entry["id"] == "tiktok"
        assert entry["available"] is True
        assert "de" in entry["languages"]
