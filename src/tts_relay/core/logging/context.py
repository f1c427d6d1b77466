"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so that every log line emitted while
a submission (or a queue item) is being processed carries the same id,
across awaits. Logging configuration is module-level state shared by the
whole process.

Environment Variables:
    - TTS_RELAY_CONFIG: Settings file to read the logging section from
    - TTS_RELAY_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_RELAY_LOG_DIR: Directory for JSONL log files
    - TTS_RELAY_JSONL_FILE: JSONL filename
    - TTS_RELAY_LOG_ROTATE_BYTES: Max log file size before rotation
    - TTS_RELAY_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Get current request ID from context ("-" if not set)."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set request ID in context for log correlation."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(cfg: Dict[str, Any], key: str, env: str) -> None:
    raw = os.getenv(env)
    if not raw:
        return
    try:
        cfg[key] = int(raw)
    except ValueError:
        pass  # ignore malformed override


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Priority (highest first): environment variables, the settings.yaml
    logging section, defaults.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_RELAY_CONFIG", "config/settings.yaml")
    try:
        from tts_relay.core.config import load_settings
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, ValueError, yaml.YAMLError):
        # Missing or unreadable settings file: defaults apply
        pass

    if os.getenv("TTS_RELAY_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_RELAY_LOG_LEVEL"]
    if os.getenv("TTS_RELAY_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_RELAY_LOG_DIR"]
    if os.getenv("TTS_RELAY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_RELAY_JSONL_FILE"]
    _env_int(cfg, "rotate_max_bytes", "TTS_RELAY_LOG_ROTATE_BYTES")
    _env_int(cfg, "rotate_backup_count", "TTS_RELAY_LOG_ROTATE_BACKUP")

    return cfg
