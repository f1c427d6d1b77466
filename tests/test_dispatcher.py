"""
Tests for the fallback dispatcher.

Tests cover:
- Primary resolution: explicit > assigned > default, unknown ids fall back
- Chain walk: unavailable engines skipped and never called
- Stop at first success, later engines untouched
- Transient failures retried, permanent failures move on
- Per-engine voice re-resolution
- AggregateFailure with ordered attempts and a recommendation
"""
import asyncio

import pytest

from tts_relay.core.config import EnginesConfig, LanguageConfig
from tts_relay.core.errors import AggregateFailure, EngineFailure, EngineUnavailableError
from tts_relay.core.metrics import RelayMetrics
from tts_relay.moderation.language import LanguageDetector
from tts_relay.tts.dispatcher import (
    AttemptOutcome,
    FallbackDispatcher,
    SpeakContext,
    build_recommendation,
)
from tts_relay.tts.engine import EngineRegistry, ErrorKind

from conftest import FakeEngine, no_sleep


def make_dispatcher(engines, default_engine="speechify", metrics=None, **config):
    registry = EngineRegistry(engines.values())
    return FallbackDispatcher(
        registry,
        EnginesConfig(default_engine=default_engine, **config),
        LanguageDetector(),
        language=LanguageConfig(fallback_language="de"),
        sleep=no_sleep,
        metrics=metrics or RelayMetrics(),
    )


def failure(engine_id, kind):
    return EngineFailure(engine_id, kind, f"{engine_id} {kind.value}")


def speak(dispatcher, text="hello there friends", **context):
    return asyncio.run(dispatcher.speak(text, SpeakContext(**context)))


class TestPrimary:

    def test_explicit_beats_assigned(self, fake_engines):
        dispatcher = make_dispatcher(fake_engines)
        ctx = SpeakContext(desired_engine_id="google", assigned_engine_id="elevenlabs")
        assert dispatcher.resolve_primary(ctx) == "google"

    def test_assigned_beats_default(self, fake_engines):
        dispatcher = make_dispatcher(fake_engines)
        assert dispatcher.resolve_primary(SpeakContext(assigned_engine_id="google")) == "google"

    def test_unknown_falls_back_to_default(self, fake_engines):
        dispatcher = make_dispatcher(fake_engines, default_engine="tiktok")
        assert dispatcher.resolve_primary(SpeakContext(desired_engine_id="polly")) == "tiktok"

    def test_chain_order(self, fake_engines):
        dispatcher = make_dispatcher(fake_engines)
        assert dispatcher.chain_for("speechify") == ["speechify", "elevenlabs", "google", "tiktok"]

    def test_chain_skips_unregistered(self):
        engines = {"google": FakeEngine("google"), "tiktok": FakeEngine("tiktok")}
        dispatcher = make_dispatcher(engines, default_engine="google")
        assert dispatcher.chain_for("google") == ["google", "tiktok"]


class TestFallback:

    def test_primary_success_single_record(self, fake_engines):
        result = speak(make_dispatcher(fake_engines))
        assert result.engine_used == "speechify"
        assert result.audio == b"audio:speechify"
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.SUCCEEDED]

    def test_quota_then_skip_then_success(self, fake_engines):
        """speechify quota -> elevenlabs unavailable -> google succeeds; tiktok untouched."""
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.QUOTA)]
        fake_engines["elevenlabs"]._available = False
        metrics = RelayMetrics()

        result = speak(make_dispatcher(fake_engines, metrics=metrics))

        assert result.engine_used == "google"
        assert [(a.engine_id, a.outcome) for a in result.attempts] == [
            ("speechify", AttemptOutcome.FAILED),
            ("elevenlabs", AttemptOutcome.SKIPPED_UNAVAILABLE),
            ("google", AttemptOutcome.SUCCEEDED),
        ]
        assert result.attempts[0].error_kind == "quota"
        assert fake_engines["elevenlabs"].calls == []
        assert fake_engines["tiktok"].calls == []
        assert len(fake_engines["speechify"].calls) == 1
        assert metrics.registry.get_sample_value(
            "relay_engine_failures_total", {"engine": "speechify", "kind": "quota"}
        ) == 1.0

    def test_not_found_then_auth_then_unconfigured_then_tiktok(self, fake_engines):
        fake_engines["speechify"].outcomes = [
            EngineFailure("speechify", ErrorKind.NOT_FOUND, "HTTP 404", status_code=404),
        ]
        fake_engines["elevenlabs"].outcomes = [
            EngineFailure("elevenlabs", ErrorKind.AUTH, "HTTP 401", status_code=401),
        ]
        fake_engines["google"]._available = False

        result = speak(make_dispatcher(fake_engines))

        assert result.engine_used == "tiktok"
        assert result.audio == b"audio:tiktok"
        assert [(a.engine_id, a.outcome.value) for a in result.attempts] == [
            ("speechify", "failed"),
            ("elevenlabs", "failed"),
            ("google", "skipped-unavailable"),
            ("tiktok", "succeeded"),
        ]
        assert [a.error_kind for a in result.attempts[:2]] == ["not_found", "auth"]
        assert fake_engines["google"].calls == []

    def test_n_failures_give_n_plus_one_records(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.AUTH)]
        fake_engines["elevenlabs"].outcomes = [failure("elevenlabs", ErrorKind.NOT_FOUND)]
        fake_engines["google"].outcomes = [failure("google", ErrorKind.INVALID_REQUEST)]
        result = speak(make_dispatcher(fake_engines))
        assert result.engine_used == "tiktok"
        assert len(result.attempts) == 4

    def test_all_fail(self, fake_engines):
        for engine_id, engine in fake_engines.items():
            engine.outcomes = [failure(engine_id, ErrorKind.AUTH)]

        with pytest.raises(AggregateFailure) as exc_info:
            speak(make_dispatcher(fake_engines))

        err = exc_info.value
        assert [a.engine_id for a in err.attempts] == ["speechify", "elevenlabs", "google", "tiktok"]
        assert len(err.failures) == 4
        assert "API keys" in err.recommendation
        assert err.to_dict()["error"] == "ALL_ENGINES_FAILED"

    def test_none_available(self):
        engines = {"speechify": FakeEngine("speechify", available=False)}
        with pytest.raises(AggregateFailure) as exc_info:
            speak(make_dispatcher(engines))
        assert exc_info.value.failures == []
        assert exc_info.value.recommendation.startswith("No engine is available")

    def test_credentials_cleared_mid_call_is_skip(self, fake_engines):
        fake_engines["speechify"].outcomes = [EngineUnavailableError("speechify")]
        result = speak(make_dispatcher(fake_engines))
        assert result.attempts[0].outcome == AttemptOutcome.SKIPPED_UNAVAILABLE
        assert result.attempts[0].error_kind is None
        assert result.engine_used == "elevenlabs"

    def test_empty_audio_is_failure(self, fake_engines):
        fake_engines["speechify"].outcomes = [b""]
        result = speak(make_dispatcher(fake_engines))
        assert result.attempts[0].error_kind == "empty_audio"
        assert result.engine_used == "elevenlabs"

    def test_unexpected_exception_is_contained(self, fake_engines):
        fake_engines["speechify"].outcomes = [RuntimeError("boom")]
        result = speak(make_dispatcher(fake_engines))
        assert result.attempts[0].error_kind == "unknown"
        assert result.engine_used == "elevenlabs"


class TestRetries:

    def test_transient_retried_on_same_engine(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.SERVER), b"second-try"]
        result = speak(make_dispatcher(fake_engines))
        assert result.engine_used == "speechify"
        assert result.audio == b"second-try"
        assert result.attempts[0].retries == 1

    def test_retry_budget_from_performance_mode(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.TIMEOUT)] * 5
        result = speak(make_dispatcher(fake_engines, performance_mode="fast"))
        # fast: one retry, then fall through
        assert len(fake_engines["speechify"].calls) == 2
        assert result.attempts[0].retries == 1
        assert result.engine_used == "elevenlabs"

    def test_permanent_not_retried(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.QUOTA)]
        speak(make_dispatcher(fake_engines))
        assert len(fake_engines["speechify"].calls) == 1

    def test_backoff_sleeps(self, fake_engines):
        slept = []

        async def record_sleep(seconds):
            slept.append(seconds)

        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.NETWORK)] * 2
        dispatcher = make_dispatcher(fake_engines, retry_backoff_s=0.5)
        dispatcher._sleep = record_sleep
        speak(dispatcher)
        assert slept == [0.5, 1.0]


class TestVoices:

    def test_desired_voice_kept_when_in_catalog(self, fake_engines):
        result = speak(make_dispatcher(fake_engines), desired_voice_id="speechify-de")
        assert result.voice_used == "speechify-de"

    def test_voice_re_resolved_on_fallback(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.AUTH)]
        # Short text is undetectable, so the fallback language (de) decides
        result = speak(make_dispatcher(fake_engines), text="ok", desired_voice_id="speechify-de")
        assert result.engine_used == "elevenlabs"
        assert result.voice_used == "elevenlabs-de"
        assert fake_engines["elevenlabs"].calls == [("ok", "elevenlabs-de", 1.0)]

    def test_speed_forwarded(self, fake_engines):
        speak(make_dispatcher(fake_engines), speed=1.5)
        assert fake_engines["speechify"].calls[0][2] == 1.5


class TestRecommendation:

    def test_groups_by_kind(self, fake_engines):
        fake_engines["speechify"].outcomes = [failure("speechify", ErrorKind.QUOTA)]
        fake_engines["elevenlabs"].outcomes = [failure("elevenlabs", ErrorKind.QUOTA)]
        fake_engines["google"].outcomes = [failure("google", ErrorKind.AUTH)]
        fake_engines["tiktok"].outcomes = [failure("tiktok", ErrorKind.INVALID_REQUEST)]
        with pytest.raises(AggregateFailure) as exc_info:
            speak(make_dispatcher(fake_engines))
        text = build_recommendation(exc_info.value.attempts)
        assert text.startswith("Quota or rate limit exhausted on speechify, elevenlabs")
        assert "check the API keys for google" in text
