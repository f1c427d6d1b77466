"""
API Request/Response Schemas.

Pydantic models for the relay HTTP adapter. They validate shape and
bounds; business rules (permissions, profanity, queue capacity) are
enforced by RelayService and surface as standardized error bodies.

Models:
    SpeakBody: POST /v1/tts/speak
    ChatEventBody: POST /v1/tts/chat
    UserBody / AssignVoiceBody / VolumeGainBody / LanguagePreferenceBody:
        user permission operations
    ConfigUpdateBody: PUT /v1/tts/config

Example Request:
    {
        "text": "Hallo zusammen, wie geht's?",
        "user_id": "12345",
        "username": "viewer_1",
        "team_level": 2
    }
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# Raw text bound; the configured max_text_length truncates below this
MAX_REQUEST_TEXT = 4000


class SpeakBody(BaseModel):
    """
    Speech request for the relay queue.

    Attributes:
        text: Message text (truncated to max_text_length by the service).
        user_id: Stable requester id.
        username: Display name (defaults to user_id).
        voice_id: Explicit voice; must exist in the chosen engine's catalog
            to be used as-is.
        engine_id: Explicit engine (speechify, elevenlabs, google, tiktok).
        source: chat, manual or gift.
        team_level: Requester's team level (gates and priority).
        is_subscriber: Subscriber bonus for priority.
        priority: Explicit priority; overrides the computed one.
    """
    text: str = Field(..., min_length=1, max_length=MAX_REQUEST_TEXT)
    user_id: str = Field(..., min_length=1, max_length=128)
    username: Optional[str] = Field(default=None, max_length=128)
    voice_id: Optional[str] = Field(default=None, max_length=100)
    engine_id: Optional[str] = Field(default=None, max_length=100)
    source: str = Field(default="chat")
    team_level: int = Field(default=0, ge=0)
    is_subscriber: bool = False
    priority: Optional[int] = None


class ChatEventBody(BaseModel):
    """Chat message forwarded by a chat bridge."""
    user_id: str = Field(..., min_length=1, max_length=128)
    username: Optional[str] = None
    text: str = Field(..., max_length=MAX_REQUEST_TEXT)
    team_level: int = Field(default=0, ge=0)
    is_subscriber: bool = False
    source: str = Field(default="chat")


class UserBody(BaseModel):
    username: Optional[str] = Field(default=None, max_length=128)


class AssignVoiceBody(BaseModel):
    voice_id: str = Field(..., min_length=1, max_length=100)
    engine_id: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(default=None, max_length=128)


class VolumeGainBody(BaseModel):
    gain: float = Field(..., ge=0.0, le=4.0)
    username: Optional[str] = Field(default=None, max_length=128)


class LanguagePreferenceBody(BaseModel):
    language: Optional[str] = Field(default=None, max_length=10)
    username: Optional[str] = Field(default=None, max_length=128)


class ConfigUpdateBody(BaseModel):
    """Flat config keys to update, e.g. {"rate_limit": 5, "profanity_filter": "strict"}."""
    updates: Dict[str, Any] = Field(..., min_length=1)


class DetectBody(BaseModel):
    text: str = Field(..., min_length=1, max_length=MAX_REQUEST_TEXT)
    engine_id: Optional[str] = Field(default=None, max_length=100)
