"""
Tests for configuration validation and defaults.

Tests cover:
- RelayConfig.from_settings() - all sections
- Defaults class values
- ConfigValidationError on invalid values
- Fallback chain rules (no self, known engines, tiktok reachable)
- Flat key view (to_flat / with_overrides)
- Environment overrides for provider keys
- load_settings() from YAML
"""

import pytest

from tts_relay.core.config import (
    CONFIG_KEYS,
    ConfigValidationError,
    Defaults,
    PERFORMANCE_MODES,
    RelayConfig,
    Settings,
    load_settings,
)


@pytest.fixture(autouse=True)
def clear_key_env(monkeypatch):
    """Provider keys in the environment would leak into from_settings()."""
    for name in ("SPEECHIFY_API_KEY", "ELEVENLABS_API_KEY", "GOOGLE_TTS_API_KEY",
                 "TIKTOK_SESSION_ID", "TTS_RELAY_PERFORMANCE_MODE", "TTS_RELAY_STORE_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for Defaults class values."""

    def test_engine_defaults(self):
        assert Defaults.DEFAULT_ENGINE == "tiktok"
        assert Defaults.VOLUME == 80
        assert Defaults.SPEED == 1.0
        assert Defaults.PERFORMANCE_MODE == "balanced"

    def test_admission_defaults(self):
        assert Defaults.RATE_LIMIT == 3
        assert Defaults.RATE_LIMIT_WINDOW_SECONDS == 60
        assert Defaults.MAX_QUEUE_SIZE == 100
        assert Defaults.MAX_TEXT_LENGTH == 300
        assert Defaults.TEAM_MIN_LEVEL == 0

    def test_every_default_chain_reaches_tiktok(self):
        for primary, chain in Defaults.FALLBACK_CHAINS.items():
            assert primary not in chain
            if primary != "tiktok":
                assert "tiktok" in chain

    def test_performance_profiles(self):
        assert PERFORMANCE_MODES["fast"].timeout_s < PERFORMANCE_MODES["balanced"].timeout_s
        assert PERFORMANCE_MODES["balanced"].timeout_s < PERFORMANCE_MODES["quality"].timeout_s
        assert PERFORMANCE_MODES["quality"].max_retries >= PERFORMANCE_MODES["fast"].max_retries


class TestRelayConfigFromSettings:
    """Tests for RelayConfig.from_settings()."""

    def test_empty_settings_use_defaults(self):
        config = RelayConfig.from_settings(Settings(raw={}))
        assert config.service.enabled is True
        assert config.engines.default_engine == "tiktok"
        assert config.rate_limit.max_requests == 3
        assert config.queue.max_queue_size == 100
        assert config.moderation.profanity_filter == "moderate"
        assert config.language.fallback_language == "en"
        assert config.engines.speechify_api_key is None

    def test_sections_are_read(self):
        config = RelayConfig.from_settings(Settings(raw={
            "service": {"enabled": "false", "enabled_for_chat": False},
            "engines": {"default_engine": "Google", "volume": 50, "speed": 1.5,
                        "performance_mode": "quality", "google_api_key": "g-key"},
            "permissions": {"team_min_level": 3},
            "rate_limit": {"max_requests": 5, "window_seconds": 30},
            "queue": {"max_queue_size": 7, "max_text_length": 120},
            "moderation": {"profanity_filter": "strict", "replacement": "beep"},
            "playback": {"duck_other_audio": True, "duck_volume": 0.1},
            "language": {"auto_detection": False, "fallback_language": "DE"},
        }))
        assert config.service.enabled is False
        assert config.service.enabled_for_chat is False
        assert config.engines.default_engine == "google"
        assert config.engines.performance.timeout_s == PERFORMANCE_MODES["quality"].timeout_s
        assert config.engines.google_api_key == "g-key"
        assert config.permissions.team_min_level == 3
        assert config.rate_limit.window_seconds == 30
        assert config.queue.max_text_length == 120
        assert config.moderation.replacement == "beep"
        assert config.playback.duck_other_audio is True
        assert config.language.fallback_language == "de"

    def test_env_key_wins_over_yaml(self, monkeypatch):
        monkeypatch.setenv("SPEECHIFY_API_KEY", "from-env")
        config = RelayConfig.from_settings(Settings(raw={"engines": {"speechify_api_key": "from-yaml"}}))
        assert config.engines.speechify_api_key == "from-env"

    def test_blank_key_is_none(self):
        config = RelayConfig.from_settings(Settings(raw={"engines": {"elevenlabs_api_key": "   "}}))
        assert config.engines.elevenlabs_api_key is None

    def test_string_log_level(self):
        config = RelayConfig.from_settings(Settings(raw={"logging": {"level": "DEBUG"}}))
        assert config.logging.level == 4

    @pytest.mark.parametrize("raw", [
        {"engines": {"default_engine": "polly"}},
        {"engines": {"volume": 101}},
        {"engines": {"speed": 0.1}},
        {"engines": {"performance_mode": "turbo"}},
        {"rate_limit": {"max_requests": 0}},
        {"queue": {"max_queue_size": -1}},
        {"moderation": {"profanity_filter": "loose"}},
        {"playback": {"duck_volume": 1.5}},
        {"language": {"confidence_threshold": 2}},
        {"logging": {"level": 9}},
    ])
    def test_invalid_values_rejected(self, raw):
        with pytest.raises(ConfigValidationError):
            RelayConfig.from_settings(Settings(raw=raw))


class TestFallbackChains:
    """Fallback chain validation."""

    def _chains(self, **overrides):
        chains = {k: list(v) for k, v in Defaults.FALLBACK_CHAINS.items()}
        chains.update(overrides)
        return Settings(raw={"engines": {"fallback_chains": chains}})

    def test_chain_containing_primary_rejected(self):
        with pytest.raises(ConfigValidationError, match="must not contain its primary"):
            RelayConfig.from_settings(self._chains(google=["google", "tiktok"]))

    def test_chain_without_tiktok_rejected(self):
        with pytest.raises(ConfigValidationError, match="must include tiktok"):
            RelayConfig.from_settings(self._chains(speechify=["elevenlabs", "google"]))

    def test_unknown_engine_rejected(self):
        with pytest.raises(ConfigValidationError, match="unknown engine"):
            RelayConfig.from_settings(self._chains(speechify=["polly", "tiktok"]))

    def test_custom_chain_accepted(self):
        config = RelayConfig.from_settings(self._chains(speechify=["tiktok"]))
        assert config.engines.fallback_chains["speechify"] == ["tiktok"]


class TestFlatKeys:
    """to_flat() and with_overrides()."""

    def test_to_flat_hides_secrets(self):
        config = RelayConfig.from_settings(Settings(raw={"engines": {"google_api_key": "secret"}}))
        flat = config.to_flat()
        assert set(flat) == set(CONFIG_KEYS)
        assert flat["google_api_key"] is True
        assert flat["speechify_api_key"] is False
        assert config.to_flat(include_secrets=True)["google_api_key"] == "secret"

    def test_with_overrides_coerces_and_copies(self):
        config = RelayConfig.from_settings(Settings(raw={}))
        updated = config.with_overrides({"rate_limit": "7", "duck_other_audio": "yes", "speed": "1.25"})
        assert updated.rate_limit.max_requests == 7
        assert updated.playback.duck_other_audio is True
        assert updated.engines.speed == 1.25
        assert config.rate_limit.max_requests == 3

    def test_with_overrides_unknown_key(self):
        config = RelayConfig.from_settings(Settings(raw={}))
        with pytest.raises(ConfigValidationError, match="unknown config key"):
            config.with_overrides({"colour": "blue"})

    def test_with_overrides_validates_ranges(self):
        config = RelayConfig.from_settings(Settings(raw={}))
        with pytest.raises(ConfigValidationError):
            config.with_overrides({"volume": 250})

    def test_with_overrides_bad_type(self):
        config = RelayConfig.from_settings(Settings(raw={}))
        with pytest.raises(ConfigValidationError, match="invalid value"):
            config.with_overrides({"rate_limit": "lots"})

    @pytest.mark.parametrize("key", ["max_queue_size", "volume", "default_engine", "duck_other_audio"])
    def test_with_overrides_null_rejected(self, key):
        config = RelayConfig.from_settings(Settings(raw={}))
        with pytest.raises(ConfigValidationError, match="must not be null"):
            config.with_overrides({key: None})

    def test_with_overrides_null_clears_secret(self):
        config = RelayConfig.from_settings(Settings(raw={"engines": {"google_api_key": "secret"}}))
        assert config.with_overrides({"google_api_key": None}).engines.google_api_key is None


class TestLoadSettings:
    """load_settings() from YAML."""

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("engines:\n  default_engine: google\nqueue:\n  max_queue_size: 9\n", encoding="utf-8")
        settings = load_settings(str(path))
        assert settings.default_engine == "google"
        assert RelayConfig.from_settings(settings).queue.max_queue_size == 9

    def test_env_default_engine(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("engines:\n  default_engine: google\n", encoding="utf-8")
        monkeypatch.setenv("TTS_RELAY_DEFAULT_ENGINE", "speechify")
        assert load_settings(str(path)).default_engine == "speechify"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_shipped_settings_are_valid(self):
        from pathlib import Path

        path = Path(__file__).resolve().parents[1] / "config" / "settings.yaml"
        config = RelayConfig.from_settings(load_settings(str(path)))
        assert config.engines.default_engine == "tiktok"
