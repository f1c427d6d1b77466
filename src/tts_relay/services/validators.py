"""
Input Validation for Speech Submissions.

Validation happens early in the submit pipeline so that unusable input
is rejected before any queue or provider work.

Rules:
    - Text: Required; whitespace-only is empty. Text longer than
      max_text_length is truncated, never rejected for length.
    - User id: Required, max 128 characters
    - Voice / engine ids: Optional, max 100 characters
    - Source: one of chat, manual, gift

All functions raise ValidationError (core/errors.py) with a stable code.
"""
from __future__ import annotations

from typing import Optional

from tts_relay.core.errors import ErrorCode, ValidationError
from tts_relay.core.logging import get_logger, verbose

_LOG = get_logger("tts-relay.validators")

MAX_USER_ID_LENGTH = 128
MAX_IDENTIFIER_LENGTH = 100
SOURCES = ("chat", "manual", "gift")


def prepare_text(text: Optional[str], max_length: int) -> str:
    """
    Trim text and bound its length.

    Args:
        text: Raw (or filtered) message text.
        max_length: Maximum characters to keep.

    Returns:
        Stripped text of at most max_length characters.

    Raises:
        ValidationError: EMPTY_TEXT if nothing remains after trimming.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Text is empty", ErrorCode.EMPTY_TEXT)

    if len(cleaned) > max_length:
        verbose(_LOG, "text_truncated", original=len(cleaned), max=max_length)
        # Trailing whitespace at the cut would make the bound look loose
        cleaned = cleaned[:max_length].rstrip()

    return cleaned


def validate_user_id(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required")

    user_id = str(user_id).strip()
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ValidationError(
            f"user_id exceeds maximum length ({len(user_id)} > {MAX_USER_ID_LENGTH})",
            details={"field": "user_id"},
        )
    return user_id


def validate_identifier(value: Optional[str], field: str) -> Optional[str]:
    """Optional voice/engine id: empty becomes None, overlong is rejected."""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"{field} exceeds maximum length ({len(value)} > {MAX_IDENTIFIER_LENGTH})",
            details={"field": field},
        )
    return value


def validate_source(source: Optional[str]) -> str:
    source = (source or "chat").strip().lower()
    if source not in SOURCES:
        raise ValidationError(
            f"source must be one of {', '.join(SOURCES)}, got {source!r}",
            details={"field": "source"},
        )
    return source
