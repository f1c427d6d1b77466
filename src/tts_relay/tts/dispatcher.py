"""
Provider Fallback Dispatcher.

speak() turns text into audio using the first engine that works:

    1. Primary = explicit engine, else the user's assigned engine, else
       the configured default (unknown ids fall back to the default)
    2. Walk [primary] + fallback_chains[primary] in order
    3. Unavailable engines (no credentials) are recorded
       "skipped-unavailable" and never called
    4. Each engine gets a voice from its own catalog: the desired voice
       if the catalog has it, else the detected language's default
       voice, else the engine default
    5. Transient failures (network, timeout, server) are retried on the
       same engine up to the performance mode's retry budget
    6. Stop at the first success; if every engine failed, raise
       AggregateFailure carrying all attempt records

Every attempt yields an (audio | None, AttemptRecord) pair. Provider
exceptions are converted to records inside _attempt() and never cross
the fallback loop; only cancellation (skip) propagates.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from tts_relay.core.config import EnginesConfig, LanguageConfig
from tts_relay.core.errors import AggregateFailure, EngineFailure, EngineUnavailableError
from tts_relay.core.logging import fail, get_logger, info, success, verbose, warn
from tts_relay.core.metrics import RelayMetrics, metrics as default_metrics
from tts_relay.moderation.language import LanguageDetector
from tts_relay.tts.engine import EngineAdapter, EngineRegistry, ErrorKind, SynthResult
from tts_relay.tts.engines.helpers import failure_from_exception
from tts_relay.utils.timeit import timeit

_LOG = get_logger("tts-relay.dispatcher")


class AttemptOutcome(str, Enum):
    SKIPPED_UNAVAILABLE = "skipped-unavailable"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass
class AttemptRecord:
    """
    One engine considered during a speak() call.

    Attributes:
        engine_id: Engine considered.
        outcome: skipped-unavailable / failed / succeeded.
        error_kind: ErrorKind value for failures.
        error_message: Last provider error message for failures.
        timestamp: Wall-clock time the attempt finished.
        voice: Voice used (None when skipped).
        retries: Additional tries after the first one.
        seconds: Time spent on this engine, retries included.
    """
    engine_id: str
    outcome: AttemptOutcome
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    voice: Optional[str] = None
    retries: int = 0
    seconds: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "engine_id": self.engine_id,
            "outcome": self.outcome.value,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
            "voice": self.voice,
            "retries": self.retries,
            "seconds": round(self.seconds, 4),
        }


@dataclass
class SpeakContext:
    """Per-request inputs for engine and voice selection."""
    desired_engine_id: Optional[str] = None
    desired_voice_id: Optional[str] = None
    assigned_engine_id: Optional[str] = None
    speed: float = 1.0


@dataclass
class SpeakResult:
    audio: bytes
    mime_type: str
    engine_used: str
    voice_used: str
    attempts: List[AttemptRecord]

    def to_dict(self) -> Dict[str, object]:
        return {
            "engine_used": self.engine_used,
            "voice_used": self.voice_used,
            "mime_type": self.mime_type,
            "audio_bytes": len(self.audio),
            "attempts": [a.to_dict() for a in self.attempts],
        }


_KIND_HINTS: Dict[str, str] = {
    ErrorKind.AUTH.value: "check the API keys for {engines}",
    ErrorKind.QUOTA.value: "quota or rate limit exhausted on {engines}; top up or change the default engine",
    ErrorKind.NETWORK.value: "{engines} unreachable; check network connectivity",
    ErrorKind.TIMEOUT.value: "{engines} timed out; try performance_mode=quality for longer timeouts",
    ErrorKind.SERVER.value: "{engines} returned server errors; check provider status",
    ErrorKind.NOT_FOUND.value: "voice or endpoint not found on {engines}; check voice assignments",
    ErrorKind.INVALID_REQUEST.value: "{engines} rejected the request; check text and voice settings",
    ErrorKind.EMPTY_AUDIO.value: "{engines} returned no audio",
    ErrorKind.UNKNOWN.value: "unexpected errors on {engines}; see logs",
}


def build_recommendation(attempts: Sequence[AttemptRecord]) -> str:
    """Operator hint grouped by failure kind, in first-seen order."""
    by_kind: Dict[str, List[str]] = {}
    for a in attempts:
        if a.outcome == AttemptOutcome.FAILED:
            by_kind.setdefault(a.error_kind or ErrorKind.UNKNOWN.value, []).append(a.engine_id)

    if not by_kind:
        return "No engine is available; configure at least one provider"

    hints = []
    for kind, engines in by_kind.items():
        template = _KIND_HINTS.get(kind, _KIND_HINTS[ErrorKind.UNKNOWN.value])
        hints.append(template.format(engines=", ".join(engines)))
    text = "; ".join(hints)
    return text[:1].upper() + text[1:]


class FallbackDispatcher:
    """
    Runs speak() over the engine registry with fallback chains.

    Args:
        registry: Engine registry.
        config: Engine configuration (default engine, chains, performance).
        detector: Language detector for voice compatibility.
        language: Language fallback policy.
        sleep: Awaitable sleep used for retry backoff (tests pass a no-op).
        metrics: Metrics sink.
    """

    def __init__(
        self,
        registry: EngineRegistry,
        config: EnginesConfig,
        detector: LanguageDetector,
        language: Optional[LanguageConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: RelayMetrics = default_metrics,
    ):
        self.registry = registry
        self.config = config
        self.detector = detector
        self.language = language or LanguageConfig()
        self._sleep = sleep
        self._metrics = metrics

    def update_config(self, config: EnginesConfig, language: Optional[LanguageConfig] = None) -> None:
        self.config = config
        if language is not None:
            self.language = language
        self.registry.update_config(config)

    # ─────────────────────────────────────────────────────────────────────────
    # Resolution
    # ─────────────────────────────────────────────────────────────────────────

    def resolve_primary(self, context: SpeakContext) -> str:
        """Explicit engine, else assigned engine, else the default."""
        for candidate, origin in (
            (context.desired_engine_id, "requested"),
            (context.assigned_engine_id, "assigned"),
        ):
            if not candidate:
                continue
            if candidate in self.registry:
                return candidate
            warn(_LOG, "unknown_engine", engine=candidate, origin=origin, fallback=self.config.default_engine)
        return self.config.default_engine

    def chain_for(self, primary: str) -> List[str]:
        """[primary] followed by its fallback chain, registered engines only."""
        order = [primary] + [e for e in self.config.fallback_chains.get(primary, []) if e != primary]
        seen = set()
        result = []
        for engine_id in order:
            if engine_id in self.registry and engine_id not in seen:
                seen.add(engine_id)
                result.append(engine_id)
        return result

    def resolve_voice(self, adapter: EngineAdapter, text: str, desired_voice: Optional[str]) -> str:
        """A voice from adapter's catalog, preferring desired_voice."""
        if adapter.has_voice(desired_voice):
            return desired_voice  # type: ignore[return-value]

        choice = self.detector.detect_and_get_voice(
            text,
            adapter,
            confidence_threshold=self.language.confidence_threshold,
            min_text_length=self.language.min_text_length,
            fallback_language=self.language.fallback_language,
        )
        if adapter.has_voice(choice.voice_id):
            return choice.voice_id
        return adapter.default_voice

    # ─────────────────────────────────────────────────────────────────────────
    # Speak
    # ─────────────────────────────────────────────────────────────────────────

    async def _attempt(
        self,
        adapter: EngineAdapter,
        text: str,
        voice: str,
        speed: float,
    ) -> Tuple[Optional[SynthResult], AttemptRecord]:
        """Try one engine with retries. Never raises except on cancellation."""
        profile = self.config.performance
        retries = 0
        started = time.perf_counter()

        while True:
            try:
                with timeit(f"attempt:{adapter.id}") as t:
                    result = await asyncio.wait_for(
                        adapter.synthesize(text, voice, speed), timeout=profile.timeout_s,
                    )
                if not result.audio:
                    raise EngineFailure(adapter.id, ErrorKind.EMPTY_AUDIO, "provider returned empty audio")
                verbose(_LOG, "attempt_ok", engine=adapter.id, voice=voice, retries=retries,
                        ms=t.timing.ms if t.timing else -1)
                record = AttemptRecord(
                    engine_id=adapter.id,
                    outcome=AttemptOutcome.SUCCEEDED,
                    voice=voice,
                    retries=retries,
                    seconds=time.perf_counter() - started,
                )
                return result, record
            except asyncio.CancelledError:
                raise
            except EngineUnavailableError:
                verbose(_LOG, "engine_skipped", engine=adapter.id, reason="credentials_cleared")
                return None, AttemptRecord(engine_id=adapter.id, outcome=AttemptOutcome.SKIPPED_UNAVAILABLE)
            except Exception as exc:
                failure = failure_from_exception(adapter.id, exc)
                if failure.kind.retryable and retries < profile.max_retries:
                    retries += 1
                    warn(_LOG, "attempt_retry", engine=adapter.id, kind=failure.kind.value,
                         retry=retries, max_retries=profile.max_retries)
                    backoff = self.config.retry_backoff_s * retries
                    if backoff > 0:
                        await self._sleep(backoff)
                    continue

                warn(_LOG, "attempt_failed", engine=adapter.id, kind=failure.kind.value,
                     retries=retries, error=failure.message[:200])
                record = AttemptRecord(
                    engine_id=adapter.id,
                    outcome=AttemptOutcome.FAILED,
                    error_kind=failure.kind.value,
                    error_message=failure.message,
                    voice=voice,
                    retries=retries,
                    seconds=time.perf_counter() - started,
                )
                return None, record

    async def speak(self, text: str, context: Optional[SpeakContext] = None) -> SpeakResult:
        """
        Synthesize text with fallback.

        Returns:
            SpeakResult with audio, engine_used, voice_used and attempts.

        Raises:
            AggregateFailure: When every considered engine failed or was
                unavailable.
        """
        context = context or SpeakContext()
        primary = self.resolve_primary(context)
        attempts: List[AttemptRecord] = []
        started = time.perf_counter()

        for engine_id in self.chain_for(primary):
            adapter = self.registry[engine_id]

            if not adapter.available():
                verbose(_LOG, "engine_skipped", engine=engine_id, reason="unavailable")
                attempts.append(AttemptRecord(engine_id=engine_id, outcome=AttemptOutcome.SKIPPED_UNAVAILABLE))
                self._metrics.record_attempt(engine_id, AttemptOutcome.SKIPPED_UNAVAILABLE.value)
                continue

            voice = self.resolve_voice(adapter, text, context.desired_voice_id)
            result, record = await self._attempt(adapter, text, voice, context.speed)
            attempts.append(record)
            self._metrics.record_attempt(engine_id, record.outcome.value, kind=record.error_kind)

            if result is not None:
                elapsed = time.perf_counter() - started
                self._metrics.record_speak(engine_id, "success", elapsed)
                success(_LOG, "speak_done", engine=engine_id, voice=voice, primary=primary,
                        attempts=len(attempts), seconds=round(elapsed, 3))
                return SpeakResult(
                    audio=result.audio,
                    mime_type=result.mime_type,
                    engine_used=engine_id,
                    voice_used=voice,
                    attempts=attempts,
                )

            if engine_id == primary:
                info(_LOG, "primary_failed", engine=engine_id, kind=record.error_kind)

        elapsed = time.perf_counter() - started
        self._metrics.record_speak("none", "failed", elapsed)
        recommendation = build_recommendation(attempts)
        fail(_LOG, "all_engines_failed", primary=primary, attempts=len(attempts),
             kinds=",".join(a.error_kind or "-" for a in attempts if a.outcome == AttemptOutcome.FAILED))
        raise AggregateFailure(attempts, recommendation)
