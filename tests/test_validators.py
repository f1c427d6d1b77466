"""
Tests for input validation.

Tests cover:
- prepare_text(): empty, whitespace-only, truncation bound
- validate_user_id(): required, max length
- validate_identifier(): optional, empty -> None, max length
- validate_source(): allowed values, default
"""
import pytest

from tts_relay.core.errors import ErrorCode, ValidationError
from tts_relay.services.validators import (
    MAX_IDENTIFIER_LENGTH,
    MAX_USER_ID_LENGTH,
    prepare_text,
    validate_identifier,
    validate_source,
    validate_user_id,
)


class TestPrepareText:

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
    def test_empty_rejected(self, text):
        with pytest.raises(ValidationError) as exc_info:
            prepare_text(text, 300)
        assert exc_info.value.code == ErrorCode.EMPTY_TEXT

    def test_strips(self):
        assert prepare_text("  hello  ", 300) == "hello"

    def test_truncates_to_max(self):
        assert prepare_text("a" * 500, 300) == "a" * 300

    def test_truncation_never_exceeds_bound(self):
        text = "word " * 100
        result = prepare_text(text, 12)
        assert len(result) <= 12
        assert result == "word word wo"

    def test_no_trailing_space_at_cut(self):
        assert prepare_text("hello world", 6) == "hello"


class TestUserId:

    def test_required(self):
        with pytest.raises(ValidationError):
            validate_user_id("  ")

    def test_too_long(self):
        with pytest.raises(ValidationError):
            validate_user_id("u" * (MAX_USER_ID_LENGTH + 1))

    def test_strips(self):
        assert validate_user_id(" 42 ") == "42"


class TestIdentifier:

    def test_none_and_empty(self):
        assert validate_identifier(None, "voice_id") is None
        assert validate_identifier("  ", "voice_id") is None

    def test_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_identifier("v" * (MAX_IDENTIFIER_LENGTH + 1), "voice_id")
        assert exc_info.value.details["field"] == "voice_id"


class TestSource:

    def test_default_chat(self):
        assert validate_source(None) == "chat"

    @pytest.mark.parametrize("source", ["chat", "MANUAL", " gift "])
    def test_allowed(self, source):
        assert validate_source(source) == source.strip().lower()

    def test_unknown(self):
        with pytest.raises(ValidationError):
            validate_source("webhook")
