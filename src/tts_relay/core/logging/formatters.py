"""
Log Formatters for JSON and Console Output.

    JsonlFormatter: one JSON object per line, for files and log shippers.
    ColoredConsoleFormatter: human-readable line for the terminal.

Output Examples:
    JSONL (file):
        {"ts":"2026-03-01T20:15:02+01:00","level":2,"tag":"WARN","message":"engine_failed",
         "request_id":"a1b2c3d4","extra":{"engine":"speechify","kind":"quota"}}

    Console (colored):
        20:15:02 [ WARN  ] (a1b2c3d4) engine_failed engine=speechify kind=quota

Console coloring of well-known fields:
    outcome:     succeeded green, failed red, skipped-unavailable yellow
    kind:        transient kinds (network/timeout/server) yellow, others red
    queue_size:  grows from cyan to yellow to red as the queue fills
    seconds:     < 0.5s green, < 2s yellow, else red
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from .colors import Colors, get_tag_color

_TRANSIENT_KINDS = {"network", "timeout", "server"}
_OUTCOME_COLORS = {
    "succeeded": Colors.GREEN,
    "failed": Colors.RED,
    "skipped-unavailable": Colors.YELLOW,
}


def _use_colors() -> bool:
    # Read at format time: configure_logging() and tests may flip it
    from . import colors
    return colors.USE_COLORS


def _paint(text: str, color: str) -> str:
    if not _use_colors():
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines.

    Keys: ts (ISO, local tz), level (1-4), tag, message, request_id,
    and when present event, seconds and extra.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format log records with ANSI colors for console output.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message key=value 0.123s
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [_paint(ts, Colors.DIM), _paint(f"[{tag:^7}]", get_tag_color(tag))]
        if rid != "-":
            parts.append(_paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(_paint(f"{k}={v}", self._field_color(k, v)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.5:
                time_color = Colors.GREEN
            elif seconds < 2.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(_paint(f"{seconds:.3f}s", time_color))

        return " ".join(parts)

    def _field_color(self, key: str, value: Any) -> str:
        if key == "outcome":
            return _OUTCOME_COLORS.get(str(value), Colors.DIM)

        if key == "kind":
            return Colors.YELLOW if str(value) in _TRANSIENT_KINDS else Colors.RED

        if key in ("engine", "engine_used"):
            return Colors.MAGENTA

        if key == "reason":
            return Colors.YELLOW

        if key == "queue_size" and isinstance(value, int):
            if value < 10:
                return Colors.CYAN
            elif value < 50:
                return Colors.YELLOW
            else:
                return Colors.RED

        if key == "cpu_percent" and isinstance(value, (int, float)):
            return Colors.RED if value >= 80 else Colors.CYAN

        return Colors.DIM
