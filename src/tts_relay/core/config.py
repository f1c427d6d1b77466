"""
Configuration Management for tts-relay.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages
    - Flat key view used by the runtime get/set-config operation

Configuration Hierarchy (highest priority first):
    1. Runtime overrides persisted in the key-value store (set_config)
    2. Environment variables (SPEECHIFY_API_KEY, TTS_RELAY_PERFORMANCE_MODE, ...)
    3. YAML config file (config/settings.yaml)
    4. Defaults class values

Example settings.yaml:
    engines:
      default_engine: tiktok
      performance_mode: balanced

    rate_limit:
      max_requests: 3
      window_seconds: 60

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import os
import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds, of the wrong type, or names an unknown option.
    """
    pass


ENGINE_IDS = ("speechify", "elevenlabs", "google", "tiktok")
PROFANITY_MODES = ("off", "moderate", "strict")
REPLACEMENT_STRATEGIES = ("asterisk", "beep", "blank", "custom")


@dataclass(frozen=True)
class PerformanceProfile:
    """Per-call provider timeout and retry budget for one performance mode."""
    timeout_s: float
    max_retries: int


PERFORMANCE_MODES: Dict[str, PerformanceProfile] = {
    "fast": PerformanceProfile(timeout_s=5.0, max_retries=1),
    "balanced": PerformanceProfile(timeout_s=10.0, max_retries=2),
    "quality": PerformanceProfile(timeout_s=20.0, max_retries=3),
}


class Defaults:
    """
    Centralized default configuration values.

    All default values are defined here to ensure consistency across
    the codebase. These values are used when no override is provided
    via YAML config, environment variables or runtime overrides.

    Sections:
        - Service: Kill switch, chat toggle, persistence
        - Engines: Provider selection, voice, volume, speed, performance
        - Permissions: Team level gate and decision cache
        - Rate limiting: Sliding window per user
        - Queue: Capacity and text length
        - Moderation: Profanity filter policy
        - Playback: Ducking of other audio
        - Language: Detection and voice fallback
        - Logging: Log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Service
    # ─────────────────────────────────────────────────────────────────────────
    ENABLED = True                      # Global kill switch
    ENABLED_FOR_CHAT = True             # Accept chat-sourced events
    STORE_PATH: Optional[str] = None    # JSON store file (None = in-memory)

    # ─────────────────────────────────────────────────────────────────────────
    # Engines
    # ─────────────────────────────────────────────────────────────────────────
    DEFAULT_ENGINE = "tiktok"
    DEFAULT_VOICE = "en_us_ghostface"
    VOLUME = 80                         # 0-100
    SPEED = 1.0                         # 0.25-4.0
    PERFORMANCE_MODE = "balanced"       # fast | balanced | quality
    RETRY_BACKOFF_S = 0.5               # Linear backoff between retries
    FALLBACK_CHAINS: Dict[str, List[str]] = {
        "speechify": ["elevenlabs", "google", "tiktok"],
        "google": ["elevenlabs", "speechify", "tiktok"],
        "elevenlabs": ["speechify", "google", "tiktok"],
        "tiktok": ["elevenlabs", "speechify", "google"],
    }

    # ─────────────────────────────────────────────────────────────────────────
    # Permissions
    # ─────────────────────────────────────────────────────────────────────────
    TEAM_MIN_LEVEL = 0
    PERMISSION_CACHE_TTL_SECONDS = 60

    # ─────────────────────────────────────────────────────────────────────────
    # Rate Limiting
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT = 3                      # Requests per window
    RATE_LIMIT_WINDOW_SECONDS = 60
    RATE_LIMIT_MAX_USERS = 1000         # Tracked users before LRU eviction

    # ─────────────────────────────────────────────────────────────────────────
    # Queue
    # ─────────────────────────────────────────────────────────────────────────
    MAX_QUEUE_SIZE = 100
    MAX_TEXT_LENGTH = 300
    DEFAULT_ITEM_DURATION_MS = 5000     # Wait estimate before any sample exists
    DURATION_SAMPLES = 20               # Rolling average window

    # ─────────────────────────────────────────────────────────────────────────
    # Moderation
    # ─────────────────────────────────────────────────────────────────────────
    PROFANITY_FILTER = "moderate"
    PROFANITY_REPLACEMENT = "asterisk"
    PROFANITY_CUSTOM_REPLACEMENT = "[censored]"

    # ─────────────────────────────────────────────────────────────────────────
    # Playback
    # ─────────────────────────────────────────────────────────────────────────
    DUCK_OTHER_AUDIO = False
    DUCK_VOLUME = 0.3
    MS_PER_CHAR = 100                   # Playback estimate per character
    PLAYBACK_BUFFER_MS = 2000           # Added to every playback estimate

    # ─────────────────────────────────────────────────────────────────────────
    # Language
    # ─────────────────────────────────────────────────────────────────────────
    AUTO_LANGUAGE_DETECTION = True
    FALLBACK_LANGUAGE = "en"
    LANGUAGE_CONFIDENCE_THRESHOLD = 0.5
    LANGUAGE_MIN_TEXT_LENGTH = 10
    LANGUAGE_CACHE_MAX_ITEMS = 1000

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG
    LOGGING_TEXT_PREVIEW_CHARS = 40


@dataclass
class ServiceConfig:
    """Service-wide switches and persistence location."""
    enabled: bool = Defaults.ENABLED
    enabled_for_chat: bool = Defaults.ENABLED_FOR_CHAT
    store_path: Optional[str] = Defaults.STORE_PATH


@dataclass
class EnginesConfig:
    """
    Provider selection and synthesis parameters.

    API keys are optional; a provider without its key reports itself
    unavailable and is skipped by the dispatcher.
    """
    default_engine: str = Defaults.DEFAULT_ENGINE
    default_voice: str = Defaults.DEFAULT_VOICE
    volume: int = Defaults.VOLUME
    speed: float = Defaults.SPEED
    performance_mode: str = Defaults.PERFORMANCE_MODE
    retry_backoff_s: float = Defaults.RETRY_BACKOFF_S
    speechify_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    tiktok_session_id: Optional[str] = None
    fallback_chains: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in Defaults.FALLBACK_CHAINS.items()}
    )

    @property
    def performance(self) -> PerformanceProfile:
        return PERFORMANCE_MODES[self.performance_mode]


@dataclass
class PermissionsConfig:
    """Team level gate and permission decision cache lifetime."""
    team_min_level: int = Defaults.TEAM_MIN_LEVEL
    cache_ttl_seconds: int = Defaults.PERMISSION_CACHE_TTL_SECONDS


@dataclass
class RateLimitConfig:
    """Sliding-window rate limit applied per user."""
    max_requests: int = Defaults.RATE_LIMIT
    window_seconds: int = Defaults.RATE_LIMIT_WINDOW_SECONDS
    max_users: int = Defaults.RATE_LIMIT_MAX_USERS


@dataclass
class QueueConfig:
    """Queue capacity and text length bound."""
    max_queue_size: int = Defaults.MAX_QUEUE_SIZE
    max_text_length: int = Defaults.MAX_TEXT_LENGTH
    default_item_duration_ms: int = Defaults.DEFAULT_ITEM_DURATION_MS


@dataclass
class ModerationConfig:
    """
    Profanity filter policy.

    Modes:
        off      = text passes through untouched
        moderate = matches are replaced using the replacement strategy
        strict   = any match drops the whole message
    """
    profanity_filter: str = Defaults.PROFANITY_FILTER
    replacement: str = Defaults.PROFANITY_REPLACEMENT
    custom_replacement: str = Defaults.PROFANITY_CUSTOM_REPLACEMENT
    custom_words: List[str] = field(default_factory=list)


@dataclass
class PlaybackConfig:
    """Playback hints forwarded to the audio sink."""
    duck_other_audio: bool = Defaults.DUCK_OTHER_AUDIO
    duck_volume: float = Defaults.DUCK_VOLUME


@dataclass
class LanguageConfig:
    """Language detection and language-aware voice fallback."""
    auto_detection: bool = Defaults.AUTO_LANGUAGE_DETECTION
    fallback_language: str = Defaults.FALLBACK_LANGUAGE
    confidence_threshold: float = Defaults.LANGUAGE_CONFIDENCE_THRESHOLD
    min_text_length: int = Defaults.LANGUAGE_MIN_TEXT_LENGTH
    cache_max_items: int = Defaults.LANGUAGE_CACHE_MAX_ITEMS


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, engine outcomes (default)
        3 = VERBOSE: Per-attempt timing, queue movement
        4 = DEBUG: Internal state, cache decisions
    """
    level: int = Defaults.LOGGING_LEVEL
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS


# Flat configuration keys exposed through get/set-config, mapped to
# (section attribute, field name) on RelayConfig.
CONFIG_KEYS: Dict[str, Tuple[str, str]] = {
    "enabled": ("service", "enabled"),
    "enabled_for_chat": ("service", "enabled_for_chat"),
    "default_engine": ("engines", "default_engine"),
    "default_voice": ("engines", "default_voice"),
    "volume": ("engines", "volume"),
    "speed": ("engines", "speed"),
    "performance_mode": ("engines", "performance_mode"),
    "speechify_api_key": ("engines", "speechify_api_key"),
    "elevenlabs_api_key": ("engines", "elevenlabs_api_key"),
    "google_api_key": ("engines", "google_api_key"),
    "tiktok_session_id": ("engines", "tiktok_session_id"),
    "team_min_level": ("permissions", "team_min_level"),
    "rate_limit": ("rate_limit", "max_requests"),
    "rate_limit_window": ("rate_limit", "window_seconds"),
    "max_queue_size": ("queue", "max_queue_size"),
    "max_text_length": ("queue", "max_text_length"),
    "profanity_filter": ("moderation", "profanity_filter"),
    "profanity_replacement": ("moderation", "replacement"),
    "duck_other_audio": ("playback", "duck_other_audio"),
    "duck_volume": ("playback", "duck_volume"),
    "auto_language_detection": ("language", "auto_detection"),
    "fallback_language": ("language", "fallback_language"),
    "language_confidence_threshold": ("language", "confidence_threshold"),
    "language_min_text_length": ("language", "min_text_length"),
}

SECRET_KEYS = frozenset({
    "speechify_api_key", "elevenlabs_api_key", "google_api_key", "tiktok_session_id",
})


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass
class RelayConfig:
    """
    Validated configuration for RelayService.

    This is the main configuration object created from Settings.
    It validates all values and provides typed access to configuration.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = RelayConfig.from_settings(settings)
        print(config.rate_limit.max_requests)  # Typed access
    """
    service: ServiceConfig = field(default_factory=ServiceConfig)
    engines: EnginesConfig = field(default_factory=EnginesConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    language: LanguageConfig = field(default_factory=LanguageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RelayConfig":
        """
        Create RelayConfig from Settings with validation.

        Reads the raw configuration dictionary, applies defaults for missing
        values and environment overrides, validates constraints, and returns
        typed configuration.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Service
        # ─────────────────────────────────────────────────────────────────────
        service_raw = raw.get("service", {}) or {}
        service = ServiceConfig(
            enabled=_as_bool(service_raw.get("enabled", Defaults.ENABLED)),
            enabled_for_chat=_as_bool(service_raw.get("enabled_for_chat", Defaults.ENABLED_FOR_CHAT)),
            store_path=_opt_str(os.getenv("TTS_RELAY_STORE_PATH") or service_raw.get("store_path")),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Engines (API keys prefer the environment)
        # ─────────────────────────────────────────────────────────────────────
        engines_raw = raw.get("engines", {}) or {}
        chains_raw = engines_raw.get("fallback_chains") or Defaults.FALLBACK_CHAINS
        engines = EnginesConfig(
            default_engine=str(engines_raw.get("default_engine", Defaults.DEFAULT_ENGINE)).strip().lower(),
            default_voice=str(engines_raw.get("default_voice", Defaults.DEFAULT_VOICE)),
            volume=int(engines_raw.get("volume", Defaults.VOLUME)),
            speed=float(engines_raw.get("speed", Defaults.SPEED)),
            performance_mode=str(
                os.getenv("TTS_RELAY_PERFORMANCE_MODE")
                or engines_raw.get("performance_mode", Defaults.PERFORMANCE_MODE)
            ).strip().lower(),
            retry_backoff_s=float(engines_raw.get("retry_backoff_s", Defaults.RETRY_BACKOFF_S)),
            speechify_api_key=_opt_str(os.getenv("SPEECHIFY_API_KEY") or engines_raw.get("speechify_api_key")),
            elevenlabs_api_key=_opt_str(os.getenv("ELEVENLABS_API_KEY") or engines_raw.get("elevenlabs_api_key")),
            google_api_key=_opt_str(os.getenv("GOOGLE_TTS_API_KEY") or engines_raw.get("google_api_key")),
            tiktok_session_id=_opt_str(os.getenv("TIKTOK_SESSION_ID") or engines_raw.get("tiktok_session_id")),
            fallback_chains={str(k): [str(e) for e in v] for k, v in chains_raw.items()},
        )
        cls._validate_choice("engines.default_engine", engines.default_engine, ENGINE_IDS)
        cls._validate_range("engines.volume", engines.volume, 0, 100)
        cls._validate_range("engines.speed", engines.speed, 0.25, 4.0)
        cls._validate_choice("engines.performance_mode", engines.performance_mode, tuple(PERFORMANCE_MODES))
        cls._validate_non_negative("engines.retry_backoff_s", engines.retry_backoff_s)
        cls._validate_chains(engines.fallback_chains)

        # ─────────────────────────────────────────────────────────────────────
        # Permissions
        # ─────────────────────────────────────────────────────────────────────
        perms_raw = raw.get("permissions", {}) or {}
        permissions = PermissionsConfig(
            team_min_level=int(perms_raw.get("team_min_level", Defaults.TEAM_MIN_LEVEL)),
            cache_ttl_seconds=int(perms_raw.get("cache_ttl_seconds", Defaults.PERMISSION_CACHE_TTL_SECONDS)),
        )
        cls._validate_non_negative("permissions.team_min_level", permissions.team_min_level)
        cls._validate_non_negative("permissions.cache_ttl_seconds", permissions.cache_ttl_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Rate limiting
        # ─────────────────────────────────────────────────────────────────────
        rl_raw = raw.get("rate_limit", {}) or {}
        rate_limit = RateLimitConfig(
            max_requests=int(rl_raw.get("max_requests", Defaults.RATE_LIMIT)),
            window_seconds=int(rl_raw.get("window_seconds", Defaults.RATE_LIMIT_WINDOW_SECONDS)),
            max_users=int(rl_raw.get("max_users", Defaults.RATE_LIMIT_MAX_USERS)),
        )
        cls._validate_positive("rate_limit.max_requests", rate_limit.max_requests)
        cls._validate_positive("rate_limit.window_seconds", rate_limit.window_seconds)
        cls._validate_positive("rate_limit.max_users", rate_limit.max_users)

        # ─────────────────────────────────────────────────────────────────────
        # Queue
        # ─────────────────────────────────────────────────────────────────────
        queue_raw = raw.get("queue", {}) or {}
        queue = QueueConfig(
            max_queue_size=int(queue_raw.get("max_queue_size", Defaults.MAX_QUEUE_SIZE)),
            max_text_length=int(queue_raw.get("max_text_length", Defaults.MAX_TEXT_LENGTH)),
            default_item_duration_ms=int(
                queue_raw.get("default_item_duration_ms", Defaults.DEFAULT_ITEM_DURATION_MS)
            ),
        )
        cls._validate_positive("queue.max_queue_size", queue.max_queue_size)
        cls._validate_positive("queue.max_text_length", queue.max_text_length)
        cls._validate_positive("queue.default_item_duration_ms", queue.default_item_duration_ms)

        # ─────────────────────────────────────────────────────────────────────
        # Moderation
        # ─────────────────────────────────────────────────────────────────────
        mod_raw = raw.get("moderation", {}) or {}
        moderation = ModerationConfig(
            profanity_filter=str(mod_raw.get("profanity_filter", Defaults.PROFANITY_FILTER)).strip().lower(),
            replacement=str(mod_raw.get("replacement", Defaults.PROFANITY_REPLACEMENT)).strip().lower(),
            custom_replacement=str(mod_raw.get("custom_replacement", Defaults.PROFANITY_CUSTOM_REPLACEMENT)),
            custom_words=[str(w) for w in (mod_raw.get("custom_words") or [])],
        )
        cls._validate_choice("moderation.profanity_filter", moderation.profanity_filter, PROFANITY_MODES)
        cls._validate_choice("moderation.replacement", moderation.replacement, REPLACEMENT_STRATEGIES)

        # ─────────────────────────────────────────────────────────────────────
        # Playback
        # ─────────────────────────────────────────────────────────────────────
        playback_raw = raw.get("playback", {}) or {}
        playback = PlaybackConfig(
            duck_other_audio=_as_bool(playback_raw.get("duck_other_audio", Defaults.DUCK_OTHER_AUDIO)),
            duck_volume=float(playback_raw.get("duck_volume", Defaults.DUCK_VOLUME)),
        )
        cls._validate_range("playback.duck_volume", playback.duck_volume, 0.0, 1.0)

        # ─────────────────────────────────────────────────────────────────────
        # Language
        # ─────────────────────────────────────────────────────────────────────
        lang_raw = raw.get("language", {}) or {}
        language = LanguageConfig(
            auto_detection=_as_bool(lang_raw.get("auto_detection", Defaults.AUTO_LANGUAGE_DETECTION)),
            fallback_language=str(lang_raw.get("fallback_language", Defaults.FALLBACK_LANGUAGE)).strip().lower(),
            confidence_threshold=float(
                lang_raw.get("confidence_threshold", Defaults.LANGUAGE_CONFIDENCE_THRESHOLD)
            ),
            min_text_length=int(lang_raw.get("min_text_length", Defaults.LANGUAGE_MIN_TEXT_LENGTH)),
            cache_max_items=int(lang_raw.get("cache_max_items", Defaults.LANGUAGE_CACHE_MAX_ITEMS)),
        )
        cls._validate_range("language.confidence_threshold", language.confidence_threshold, 0.0, 1.0)
        cls._validate_non_negative("language.min_text_length", language.min_text_length)
        cls._validate_positive("language.cache_max_items", language.cache_max_items)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            level=log_level,
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
        )
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)

        return cls(
            service=service,
            engines=engines,
            permissions=permissions,
            rate_limit=rate_limit,
            queue=queue,
            moderation=moderation,
            playback=playback,
            language=language,
            logging=logging_cfg,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Flat key view (get/set-config)
    # ─────────────────────────────────────────────────────────────────────────

    def to_flat(self, include_secrets: bool = False) -> Dict[str, Any]:
        """
        Flatten into the public configuration keys.

        API keys are reported as booleans ("configured or not") unless
        include_secrets is set.
        """
        out: Dict[str, Any] = {}
        for key, (section, attr) in CONFIG_KEYS.items():
            value = getattr(getattr(self, section), attr)
            if key in SECRET_KEYS and not include_secrets:
                value = value is not None
            out[key] = value
        return out

    def with_overrides(self, overrides: Dict[str, Any]) -> "RelayConfig":
        """
        Return a copy with flat-key overrides applied and validated.

        Raises:
            ConfigValidationError: On unknown keys or invalid values.
        """
        sections: Dict[str, Dict[str, Any]] = {}
        for key, value in overrides.items():
            if key not in CONFIG_KEYS:
                raise ConfigValidationError(f"unknown config key: {key}")
            section, attr = CONFIG_KEYS[key]
            sections.setdefault(section, {})[attr] = value

        updated = self
        for section, changes in sections.items():
            current = getattr(updated, section)
            coerced = {}
            for f in fields(current):
                if f.name in changes:
                    coerced[f.name] = self._coerce(
                        getattr(current, f.name), changes[f.name], f.name,
                        nullable=str(f.type).startswith("Optional"),
                    )
            updated = replace(updated, **{section: replace(current, **coerced)})

        updated.validate()
        return updated

    @staticmethod
    def _coerce(current: Any, value: Any, name: str, nullable: bool = False) -> Any:
        if value is None:
            if nullable:
                return None
            raise ConfigValidationError(f"{name} must not be null")
        try:
            if isinstance(current, bool):
                return _as_bool(value)
            if isinstance(current, int):
                return int(value)
            if isinstance(current, float):
                return float(value)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"{name} has invalid value {value!r}")
        if isinstance(value, str):
            return value.strip()
        return value

    def validate(self) -> None:
        """Re-run the range and choice checks on the current values."""
        e = self.engines
        self._validate_choice("default_engine", e.default_engine, ENGINE_IDS)
        self._validate_range("volume", e.volume, 0, 100)
        self._validate_range("speed", e.speed, 0.25, 4.0)
        self._validate_choice("performance_mode", e.performance_mode, tuple(PERFORMANCE_MODES))
        self._validate_chains(e.fallback_chains)
        self._validate_non_negative("team_min_level", self.permissions.team_min_level)
        self._validate_positive("rate_limit", self.rate_limit.max_requests)
        self._validate_positive("rate_limit_window", self.rate_limit.window_seconds)
        self._validate_positive("max_queue_size", self.queue.max_queue_size)
        self._validate_positive("max_text_length", self.queue.max_text_length)
        self._validate_choice("profanity_filter", self.moderation.profanity_filter, PROFANITY_MODES)
        self._validate_choice("profanity_replacement", self.moderation.replacement, REPLACEMENT_STRATEGIES)
        self._validate_range("duck_volume", self.playback.duck_volume, 0.0, 1.0)
        self._validate_range("language_confidence_threshold", self.language.confidence_threshold, 0.0, 1.0)
        self._validate_non_negative("language_min_text_length", self.language.min_text_length)

    # ─────────────────────────────────────────────────────────────────────────
    # Validators
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_choice(name: str, value: str, choices: Tuple[str, ...]) -> None:
        """Validate that a value is one of the allowed choices."""
        if value not in choices:
            raise ConfigValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")

    @staticmethod
    def _validate_chains(chains: Dict[str, List[str]]) -> None:
        """
        Validate fallback chains.

        A chain never contains its own primary, names only known engines,
        and always ends up reaching the credential-free tiktok engine.
        """
        for primary, chain in chains.items():
            if primary not in ENGINE_IDS:
                raise ConfigValidationError(f"fallback_chains: unknown primary engine {primary!r}")
            for engine_id in chain:
                if engine_id not in ENGINE_IDS:
                    raise ConfigValidationError(
                        f"fallback_chains.{primary}: unknown engine {engine_id!r}"
                    )
            if primary in chain:
                raise ConfigValidationError(f"fallback_chains.{primary} must not contain its primary")
            if len(set(chain)) != len(chain):
                raise ConfigValidationError(f"fallback_chains.{primary} contains duplicates")
            if primary != "tiktok" and "tiktok" not in chain:
                raise ConfigValidationError(f"fallback_chains.{primary} must include tiktok")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_relay_config() to get a validated RelayConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def default_engine(self) -> str:
        """Get the configured default engine id."""
        return str((self.raw.get("engines", {}) or {}).get("default_engine", Defaults.DEFAULT_ENGINE))

    @property
    def store_path(self) -> Optional[str]:
        """Get the JSON store location (None = in-memory store)."""
        return _opt_str((self.raw.get("service", {}) or {}).get("store_path"))

    def get_relay_config(self) -> RelayConfig:
        """
        Get validated RelayConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return RelayConfig.from_settings(self)


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - TTS_RELAY_DEFAULT_ENGINE: Override engines.default_engine

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    engine = os.getenv("TTS_RELAY_DEFAULT_ENGINE")
    if engine:
        raw.setdefault("engines", {})["default_engine"] = engine

    return Settings(raw=raw)
