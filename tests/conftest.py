"""
Shared fixtures: scripted engine adapters and a relay service wired to them.
"""
from typing import Iterable, List, Optional

import pytest

from tts_relay.core.config import EnginesConfig, Settings
from tts_relay.services.store import InMemoryStore
from tts_relay.tts.engine import EngineAdapter, EngineRegistry, SynthResult, Voice


class FakeEngine(EngineAdapter):
    """
    Engine adapter with scripted outcomes.

    Each synthesize() call pops the next outcome: bytes are returned as
    audio, exceptions are raised. With no outcomes left it succeeds.
    """
    requires_credentials = False

    def __init__(
        self,
        engine_id: str,
        available: bool = True,
        outcomes: Optional[Iterable] = None,
        voices: Iterable[str] = (),
        language_defaults: Optional[dict] = None,
        config: Optional[EnginesConfig] = None,
    ):
        self.id = engine_id
        self.display_name = engine_id.title()
        voice_ids = list(voices) or [f"{engine_id}-en", f"{engine_id}-de"]
        self.VOICES = {v: Voice(v, "de" if v.endswith("-de") else "en", "neutral", v) for v in voice_ids}
        self.DEFAULT_VOICE = voice_ids[0]
        self.LANGUAGE_DEFAULTS = dict(language_defaults or {
            "en": voice_ids[0],
            "de": voice_ids[1] if len(voice_ids) > 1 else voice_ids[0],
        })
        super().__init__(config or EnginesConfig())
        self._available = available
        self.outcomes: List = list(outcomes or [])
        self.calls: List[tuple] = []

    def available(self) -> bool:
        return self._available

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthResult:
        self.calls.append((text, voice, speed))
        outcome = self.outcomes.pop(0) if self.outcomes else f"audio:{self.id}".encode()
        if isinstance(outcome, BaseException):
            raise outcome
        return SynthResult(audio=outcome)


async def no_sleep(_seconds: float) -> None:
    return None


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_engines():
    """All four engine ids backed by FakeEngine, every one available."""
    return {
        engine_id: FakeEngine(engine_id)
        for engine_id in ("speechify", "elevenlabs", "google", "tiktok")
    }


@pytest.fixture
def registry(fake_engines):
    return EngineRegistry(fake_engines.values())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def relay_settings():
    """Settings for service tests: permissive, verbose-free, in-memory."""
    return Settings(raw={
        "engines": {"default_engine": "tiktok", "default_voice": "tiktok-en"},
        "rate_limit": {"max_requests": 3, "window_seconds": 60},
        "queue": {"max_queue_size": 5, "max_text_length": 50},
        "language": {"auto_detection": False},
        "logging": {"level": 1},
    })


@pytest.fixture
def make_service(relay_settings, registry, clock):
    """Factory for RelayService instances over the fake registry."""
    from tts_relay.services.relay_service import RelayService

    def _make(settings: Optional[Settings] = None, store=None, **kwargs):
        return RelayService(
            settings or relay_settings,
            store=store if store is not None else InMemoryStore(),
            registry=kwargs.pop("registry", registry),
            clock=kwargs.pop("clock", clock),
            sleep=kwargs.pop("sleep", no_sleep),
            **kwargs,
        )

    return _make
