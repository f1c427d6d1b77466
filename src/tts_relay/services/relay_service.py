"""
RelayService - Speech Relay Orchestration.

This module provides the central RelayService class, the single entry
point for every boundary operation. The HTTP adapter, the CLI and an
embedding chat bridge all go through it.

Submit pipeline (rejections happen before any provider call):

    kill switch -> permission -> rate limit -> profanity -> empty/truncate
    -> engine + voice resolution -> queue.enqueue()

Processing (one item at a time, on the queue worker):

    dispatcher.speak() -> playback-ready -> playback-started
    -> wait for the sink's completion signal (or the estimated duration)
    -> playback-ended

Voice resolution for the primary engine:
    1. Voice in the request
    2. Voice assigned to the user
    3. Auto language detection: the user's language preference, else the
       detected language (fallback_language below the confidence
       threshold or minimum length), mapped to the engine's voice
    4. Configured default_voice
Fallback engines re-resolve an incompatible voice in the dispatcher.

Example:
    >>> from tts_relay.core.config import Settings
    >>> from tts_relay.services.relay_service import RelayService, SpeakRequest
    >>>
    >>> service = RelayService(Settings(raw={}))
    >>> result = service.submit(SpeakRequest(text="Hello chat", user_id="u1"))
    >>> result.position
    1
"""
from __future__ import annotations

import asyncio
import base64
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tts_relay import __version__
from tts_relay.core.config import CONFIG_KEYS, ConfigValidationError, Defaults, RelayConfig, Settings
from tts_relay.core.errors import (
    AggregateFailure,
    ErrorCode,
    NotFoundError,
    PermissionDeniedError,
    ProfanityBlockedError,
    RateLimitExceededError,
    RelayError,
    ServiceDisabledError,
    ValidationError,
)
from tts_relay.core.logging import debug, error, fail, get_logger, info, verbose, warn
from tts_relay.core.metrics import RelayMetrics, metrics as default_metrics
from tts_relay.core.resources import get_sampler, is_resources_enabled
from tts_relay.moderation.language import LanguageDetector
from tts_relay.moderation.profanity import ProfanityFilter
from tts_relay.services import events as ev
from tts_relay.services.events import EventBus
from tts_relay.services.permissions import PermissionManager, UserPermission
from tts_relay.services.store import KeyValueStore, open_store
from tts_relay.services.validators import (
    prepare_text,
    validate_identifier,
    validate_source,
    validate_user_id,
)
from tts_relay.tts.dispatcher import FallbackDispatcher, SpeakContext, SpeakResult
from tts_relay.tts.engine import EngineAdapter, EngineRegistry, create_engines
from tts_relay.tts.queue import EnqueueResult, PriorityQueueManager, QueueItem, SynthesisRequest
from tts_relay.tts.rate_limiter import RateLimiter

_LOG = get_logger("tts-relay.service")

CONFIG_PREFIX = "config:"


def estimate_playback_ms(text: str, speed: float = 1.0) -> int:
    """Playback estimate: 100 ms per character at speed 1.0, plus 2 s buffer."""
    speed = speed if speed and speed > 0 else 1.0
    return int(math.ceil(len(text) * Defaults.MS_PER_CHAR / speed)) + Defaults.PLAYBACK_BUFFER_MS


@dataclass
class SpeakRequest:
    """
    Inbound speech request.

    Attributes:
        text: Message text.
        user_id: Stable requester id.
        username: Display name (defaults to user_id).
        voice_id: Explicit voice (optional).
        engine_id: Explicit engine (optional).
        source: chat | manual | gift.
        team_level: Requester's team/fan level.
        is_subscriber: Subscriber flag.
        priority: Explicit queue priority (optional).
    """
    text: str
    user_id: str
    username: Optional[str] = None
    voice_id: Optional[str] = None
    engine_id: Optional[str] = None
    source: str = "chat"
    team_level: int = 0
    is_subscriber: bool = False
    priority: Optional[int] = None


@dataclass
class SubmitResult:
    """Accepted submission."""
    item_id: str
    position: int
    queue_size: int
    estimated_wait_ms: int
    priority: int
    engine: str
    voice: str
    text: str
    truncated: bool
    filtered: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "item_id": self.item_id,
            "position": self.position,
            "queue_size": self.queue_size,
            "estimated_wait_ms": self.estimated_wait_ms,
            "priority": self.priority,
            "engine": self.engine,
            "voice": self.voice,
            "text": self.text,
            "truncated": self.truncated,
            "filtered": self.filtered,
        }


class RelayService:
    """
    Speech relay: admission, queueing and dispatch.

    Args:
        settings: Application settings.
        store: Durable key-value store (default: from service.store_path).
        registry: Engine registry (default: all bundled adapters).
        clock: Monotonic clock for rate limiting and caches.
        sleep: Retry backoff sleep passed to the dispatcher.
        playback_timeout_scale: Multiplier on the estimated playback
            duration used when the sink never signals completion.
        metrics: Metrics sink.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[KeyValueStore] = None,
        registry: Optional[EngineRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        playback_timeout_scale: float = 1.0,
        metrics: RelayMetrics = default_metrics,
    ):
        self._settings = settings
        self._base_config = RelayConfig.from_settings(settings)
        self._store = store if store is not None else open_store(self._base_config.service.store_path)
        self._metrics = metrics
        self._playback_timeout_scale = playback_timeout_scale
        self._config_lock = threading.Lock()

        self._config = self._load_overrides(self._base_config)
        cfg = self._config

        self.registry = registry if registry is not None else create_engines(cfg.engines)
        self.registry.update_config(cfg.engines)
        self.detector = LanguageDetector(max_cache_items=cfg.language.cache_max_items)
        self.profanity = ProfanityFilter.from_config(cfg.moderation)
        self.permissions = PermissionManager(
            self._store, cache_ttl_seconds=cfg.permissions.cache_ttl_seconds, clock=clock,
        )
        self.rate_limiter = RateLimiter.from_config(cfg.rate_limit, clock=clock)
        self.dispatcher = FallbackDispatcher(
            self.registry, cfg.engines, self.detector, cfg.language, sleep=sleep, metrics=metrics,
        )
        self.queue = PriorityQueueManager(
            max_size=cfg.queue.max_queue_size,
            processor=self._process_item,
            default_item_duration_ms=cfg.queue.default_item_duration_ms,
            metrics=metrics,
        )
        self.events = EventBus()

        self._playback_done: Dict[str, asyncio.Event] = {}
        self._started_at = time.time()

        for adapter in self.registry.all():
            self._metrics.set_engine_available(adapter.id, adapter.available())

        info(_LOG, "service_ready", default_engine=cfg.engines.default_engine,
             available=",".join(self.registry.available_ids()),
             performance_mode=cfg.engines.performance_mode)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def settings(self) -> Settings:
        return self._settings

    # =========================================================================
    # Submit
    # =========================================================================

    def submit(self, request: SpeakRequest) -> SubmitResult:
        """
        Admit a request into the queue.

        Raises:
            ServiceDisabledError: Kill switch is off.
            ValidationError: Bad input or empty text.
            PermissionDeniedError: Permission hierarchy denied the user.
            RateLimitExceededError: User exceeded the window.
            ProfanityBlockedError: Strict filter dropped the text.
            QueueFullError: Queue at capacity.
        """
        try:
            result = self._submit(request)
        except RelayError as exc:
            self._metrics.record_submission(exc.code.lower())
            info(_LOG, "submit_rejected", user=request.user_id, error=exc.code,
                 reason=exc.details.get("reason", "-"))
            raise
        self._metrics.record_submission("accepted")
        return result

    def _submit(self, request: SpeakRequest) -> SubmitResult:
        cfg = self._config
        if not cfg.service.enabled:
            raise ServiceDisabledError()

        user_id = validate_user_id(request.user_id)
        username = (request.username or "").strip() or user_id
        source = validate_source(request.source)
        prepare_text(request.text, cfg.queue.max_text_length)
        voice_id = validate_identifier(request.voice_id, "voice_id")
        engine_id = validate_identifier(request.engine_id, "engine_id")

        decision = self.permissions.check_permission(
            user_id, username, int(request.team_level or 0), cfg.permissions.team_min_level,
        )
        if not decision.allowed:
            raise PermissionDeniedError(decision.reason)

        limit = self.rate_limiter.check(user_id)
        if not limit.allowed:
            raise RateLimitExceededError(user_id, limit.retry_after_s)

        text = request.text or ""
        lang_hint = None
        if cfg.moderation.profanity_filter != "off" and text.strip():
            detected = self.detector.detect(text)
            lang_hint = detected.lang_code if detected.detected else None
        filtered = self.profanity.filter(text, lang_hint)
        if filtered.action == "drop":
            warn(_LOG, "profanity_dropped", user=user_id, matches=len(filtered.matches))
            raise ProfanityBlockedError([m.to_dict() for m in filtered.matches])

        max_len = cfg.queue.max_text_length
        final_text = prepare_text(filtered.filtered, max_len)
        truncated = len(filtered.filtered.strip()) > max_len

        user = self.permissions.get_user(user_id)
        primary = self.dispatcher.resolve_primary(SpeakContext(
            desired_engine_id=engine_id,
            assigned_engine_id=user.assigned_engine_id if user else None,
        ))
        voice = self._resolve_voice(final_text, voice_id, user, primary)
        gain = user.volume_gain if user else 1.0

        enqueued: EnqueueResult = self.queue.enqueue(SynthesisRequest(
            text=final_text,
            requester_id=user_id,
            requester_name=username,
            desired_voice_id=voice,
            desired_engine_id=primary,
            speed=cfg.engines.speed,
            volume=cfg.engines.volume * gain,
            source=source,
            team_level=int(request.team_level or 0),
            is_subscriber=bool(request.is_subscriber),
            priority=request.priority,
        ))

        self.events.publish(ev.ENQUEUED, {
            "id": enqueued.item_id,
            "user_id": user_id,
            "username": username,
            "text": final_text,
            "engine": primary,
            "voice": voice,
            "position": enqueued.position,
            "queue_size": enqueued.queue_size,
            "estimated_wait_ms": enqueued.estimated_wait_ms,
        })

        return SubmitResult(
            item_id=enqueued.item_id,
            position=enqueued.position,
            queue_size=enqueued.queue_size,
            estimated_wait_ms=enqueued.estimated_wait_ms,
            priority=enqueued.priority,
            engine=primary,
            voice=voice,
            text=final_text,
            truncated=truncated,
            filtered=filtered.has_profanity,
        )

    def _resolve_voice(
        self,
        text: str,
        voice_id: Optional[str],
        user: Optional[UserPermission],
        engine_id: str,
    ) -> str:
        if voice_id:
            return voice_id
        if user and user.assigned_voice_id:
            return user.assigned_voice_id

        cfg = self._config
        adapter = self.registry.get(engine_id)
        if cfg.language.auto_detection and adapter is not None:
            if user and user.language_preference:
                return adapter.default_voice_for_language(user.language_preference)
            choice = self.detector.detect_and_get_voice(
                text,
                adapter,
                confidence_threshold=cfg.language.confidence_threshold,
                min_text_length=cfg.language.min_text_length,
                fallback_language=cfg.language.fallback_language,
            )
            verbose(_LOG, "voice_by_language", lang=choice.lang_code, voice=choice.voice_id,
                    confidence=choice.confidence, fallback=choice.used_fallback)
            return choice.voice_id

        return cfg.engines.default_voice

    def handle_chat_event(self, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Inbound chat message handler.

        Accepts {user_id, username, text, team_level, is_subscriber, source}.
        Returns None when chat speech is disabled, otherwise the submit
        result or the standardized error dict. Never raises RelayError.
        """
        if not self._config.service.enabled_for_chat:
            verbose(_LOG, "chat_ignored", reason="enabled_for_chat=false")
            return None

        user_id = str(event.get("user_id") or event.get("username") or "")
        request = SpeakRequest(
            text=str(event.get("text") or ""),
            user_id=user_id,
            username=event.get("username") or user_id,
            source=str(event.get("source") or "chat"),
            team_level=int(event.get("team_level") or 0),
            is_subscriber=bool(event.get("is_subscriber", False)),
        )
        try:
            return self.submit(request).to_dict()
        except RelayError as exc:
            return exc.to_dict()

    # =========================================================================
    # Processing
    # =========================================================================

    async def _process_item(self, item: QueueItem) -> bool:
        """Queue processor: synthesize, hand audio to the sink, await playback."""
        req = item.request
        try:
            result: SpeakResult = await self.dispatcher.speak(req.text, SpeakContext(
                desired_engine_id=req.desired_engine_id,
                desired_voice_id=req.desired_voice_id,
                speed=req.speed,
            ))
        except AggregateFailure as exc:
            fail(_LOG, "item_failed", item=item.id, recommendation=exc.recommendation)
            self.events.publish(ev.PLAYBACK_ERROR, {
                "id": item.id,
                "username": req.requester_name,
                "error": exc.code,
                "message": exc.message,
                "recommendation": exc.recommendation,
                "attempts": [a.to_dict() for a in exc.attempts],
            })
            return False

        playback = self._config.playback
        done = asyncio.Event()
        self._playback_done[item.id] = done
        try:
            self.events.publish(ev.PLAYBACK_READY, {
                "id": item.id,
                "username": req.requester_name,
                "text": req.text,
                "engine": result.engine_used,
                "voice": result.voice_used,
                "mime_type": result.mime_type,
                "audio_b64": base64.b64encode(result.audio).decode("ascii"),
                "volume": req.volume,
                "speed": req.speed,
                "duck_other_audio": playback.duck_other_audio,
                "duck_volume": playback.duck_volume,
                "attempts": [a.to_dict() for a in result.attempts],
            })
            self.events.publish(ev.PLAYBACK_STARTED, {
                "id": item.id,
                "username": req.requester_name,
                "text": req.text,
            })

            timeout_s = estimate_playback_ms(req.text, req.speed) / 1000.0 * self._playback_timeout_scale
            try:
                await asyncio.wait_for(done.wait(), timeout=timeout_s)
                signalled = True
            except asyncio.TimeoutError:
                signalled = False
            debug(_LOG, "playback_finished", item=item.id, signalled=signalled,
                  timeout_s=round(timeout_s, 2))

            self.events.publish(ev.PLAYBACK_ENDED, {
                "id": item.id,
                "username": req.requester_name,
                "signalled": signalled,
            })
            return True
        finally:
            self._playback_done.pop(item.id, None)

    def notify_playback_finished(self, item_id: str) -> bool:
        """Completion signal from the audio sink. False if not playing."""
        done = self._playback_done.get(item_id)
        if done is None:
            return False
        done.set()
        return True

    async def speak_now(self, text: str, engine_id: Optional[str] = None,
                        voice_id: Optional[str] = None) -> SpeakResult:
        """Synthesize immediately, bypassing admission and the queue (CLI, diagnostics)."""
        final_text = prepare_text(text, self._config.queue.max_text_length)
        primary = self.dispatcher.resolve_primary(SpeakContext(desired_engine_id=engine_id))
        voice = self._resolve_voice(final_text, voice_id, None, primary)
        return await self.dispatcher.speak(final_text, SpeakContext(
            desired_engine_id=primary, desired_voice_id=voice, speed=self._config.engines.speed,
        ))

    # =========================================================================
    # Queue control
    # =========================================================================

    def queue_status(self) -> Dict[str, Any]:
        return self.queue.status()

    def clear_queue(self) -> int:
        count = self.queue.clear()
        self.events.publish(ev.QUEUE_CLEARED, {"count": count})
        return count

    def skip_current(self) -> Optional[str]:
        """Abort the in-flight item. Returns its id, or None when idle."""
        item = self.queue.skip()
        item_id = item.id if item else None
        self.events.publish(ev.QUEUE_SKIPPED, {"skipped": item is not None, "id": item_id})
        return item_id

    # =========================================================================
    # Voices
    # =========================================================================

    def _engine(self, engine_id: str) -> EngineAdapter:
        adapter = self.registry.get(engine_id)
        if adapter is None:
            raise NotFoundError(f"Unknown engine: {engine_id}", {"engine": engine_id})
        return adapter

    def voices(self, engine_id: Optional[str] = None) -> Dict[str, Any]:
        """Voice catalog per engine, with availability."""
        adapters = [self._engine(engine_id)] if engine_id else self.registry.all()
        return {
            a.id: {
                "name": a.display_name,
                "available": a.available(),
                "default_voice": a.default_voice,
                "voices": [v.to_dict() for v in a.voices().values()],
            }
            for a in adapters
        }

    def detect_language(self, text: str, engine_id: Optional[str] = None) -> Dict[str, Any]:
        adapter = self._engine(engine_id or self._config.engines.default_engine)
        result = self.detector.detect(text)
        choice = self.detector.detect_and_get_voice(
            text,
            adapter,
            confidence_threshold=self._config.language.confidence_threshold,
            min_text_length=self._config.language.min_text_length,
            fallback_language=self._config.language.fallback_language,
        )
        return {**result.to_dict(), "engine": adapter.id, **choice.to_dict()}

    # =========================================================================
    # Permissions
    # =========================================================================

    def allow_user(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        return self.permissions.allow(validate_user_id(user_id), username)

    def deny_user(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        return self.permissions.deny(validate_user_id(user_id), username)

    def blacklist_user(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        return self.permissions.blacklist(validate_user_id(user_id), username)

    def unblacklist_user(self, user_id: str) -> bool:
        return self.permissions.unblacklist(validate_user_id(user_id))

    def assign_voice(
        self,
        user_id: str,
        voice_id: str,
        engine_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> UserPermission:
        """
        Assign a voice (and optionally an engine) to a user.

        Raises:
            ValidationError: Unknown engine, or voice not in its catalog.
        """
        voice_id = validate_identifier(voice_id, "voice_id")
        if not voice_id:
            raise ValidationError("voice_id is required", details={"field": "voice_id"})
        engine_id = validate_identifier(engine_id, "engine_id")
        if engine_id is not None:
            adapter = self.registry.get(engine_id)
            if adapter is None:
                raise ValidationError(f"Unknown engine: {engine_id}", details={"field": "engine_id"})
            if not adapter.has_voice(voice_id):
                raise ValidationError(
                    f"Voice {voice_id} is not in the {engine_id} catalog",
                    details={"field": "voice_id", "engine": engine_id},
                )
        return self.permissions.assign_voice(validate_user_id(user_id), username, voice_id, engine_id)

    def remove_voice(self, user_id: str) -> bool:
        return self.permissions.remove_voice(validate_user_id(user_id))

    def set_volume_gain(self, user_id: str, gain: float, username: Optional[str] = None) -> UserPermission:
        try:
            return self.permissions.set_volume_gain(validate_user_id(user_id), username, gain)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "volume_gain"}) from exc

    def set_language_preference(self, user_id: str, lang: Optional[str],
                                username: Optional[str] = None) -> UserPermission:
        lang = validate_identifier(lang, "language_preference")
        return self.permissions.set_language_preference(validate_user_id(user_id), username, lang)

    def delete_user(self, user_id: str) -> bool:
        return self.permissions.delete_user(validate_user_id(user_id))

    def get_user(self, user_id: str) -> UserPermission:
        user = self.permissions.get_user(validate_user_id(user_id))
        if user is None:
            raise NotFoundError(f"Unknown user: {user_id}", {"user_id": user_id})
        return user

    def list_users(self, filter: Optional[str] = None) -> List[UserPermission]:
        try:
            return self.permissions.list_users(filter or None)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "filter"}) from exc

    def permission_stats(self) -> Dict[str, Any]:
        return self.permissions.stats()

    # =========================================================================
    # Configuration
    # =========================================================================

    def _load_overrides(self, base: RelayConfig) -> RelayConfig:
        stored = {k[len(CONFIG_PREFIX):]: v for k, v in self._store.items(CONFIG_PREFIX)}
        stored = {k: v for k, v in stored.items() if k in CONFIG_KEYS}
        if not stored:
            return base
        try:
            config = base.with_overrides(stored)
        except ConfigValidationError as exc:
            error(_LOG, "stored_config_invalid", error=str(exc))
            return base
        info(_LOG, "config_overrides_loaded", keys=",".join(sorted(stored)))
        return config

    def get_config(self, include_secrets: bool = False) -> Dict[str, Any]:
        return self._config.to_flat(include_secrets=include_secrets)

    def set_config(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate, persist and apply flat config updates.

        Raises:
            ValidationError: CONFIG_INVALID on unknown keys, bad values or
                engine ids the registry does not know.
        """
        with self._config_lock:
            try:
                new = self._config.with_overrides(updates)
            except ConfigValidationError as exc:
                raise ValidationError(str(exc), ErrorCode.CONFIG_INVALID) from exc
            if new.engines.default_engine not in self.registry:
                raise ValidationError(
                    f"default_engine {new.engines.default_engine!r} is not registered",
                    ErrorCode.CONFIG_INVALID,
                )
            try:
                self.queue.set_max_size(new.queue.max_queue_size)
            except ValueError as exc:
                raise ValidationError(str(exc), ErrorCode.CONFIG_INVALID) from exc

            for key, value in updates.items():
                self._store.set(CONFIG_PREFIX + key, value)
            self._apply_config(new)

        info(_LOG, "config_updated", keys=",".join(sorted(updates)))
        return self.get_config()

    def _apply_config(self, cfg: RelayConfig) -> None:
        self._config = cfg
        self.dispatcher.update_config(cfg.engines, cfg.language)
        self.rate_limiter.update_limits(cfg.rate_limit.max_requests, cfg.rate_limit.window_seconds)
        self.profanity.set_mode(cfg.moderation.profanity_filter)
        self.profanity.set_replacement(cfg.moderation.replacement, cfg.moderation.custom_replacement)
        for adapter in self.registry.all():
            self._metrics.set_engine_available(adapter.id, adapter.available())

    # =========================================================================
    # Lifecycle & Health
    # =========================================================================

    async def start(self) -> None:
        """Start the queue worker on the running loop."""
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
        await self.registry.aclose()

    def health(self) -> Dict[str, Any]:
        engines = self.registry.describe()
        available = [e["id"] for e in engines if e["available"]]
        payload: Dict[str, Any] = {
            "ok": True,
            "status": "ok" if available else "degraded",
            "version": __version__,
            "uptime_s": round(time.time() - self._started_at, 1),
            "enabled": self._config.service.enabled,
            "enabled_for_chat": self._config.service.enabled_for_chat,
            "default_engine": self._config.engines.default_engine,
            "performance_mode": self._config.engines.performance_mode,
            "engines": engines,
            "queue": {k: v for k, v in self.queue.status().items() if k != "pending"},
            "caches": {
                "language": self.detector.cache_stats(),
                "permissions": self.permissions.stats()["cache"],
                "rate_limit": self.rate_limiter.stats(),
            },
            "subscribers": self.events.subscriber_count,
        }
        if is_resources_enabled():
            payload["resources"] = get_sampler().sample().to_dict()
        return payload


# =============================================================================
# Singleton
# =============================================================================

_service: Optional[RelayService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> RelayService:
    """
    Get or create the global RelayService instance.

    Thread-safe with double-checked locking; settings are only used on
    first creation.
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = RelayService(settings)
    return _service


def reset_service() -> None:
    """Reset the global service instance (for testing)."""
    global _service
    with _service_lock:
        _service = None
