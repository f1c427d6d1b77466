"""
tts-relay: Chat-driven Speech Relay.

Turns a bursty stream of short chat messages into spoken audio across
several interchangeable synthesis providers, without ever fully failing
while at least one provider is reachable.

Supported Providers:
    - Speechify: Premium voices, API key required
    - ElevenLabs: Multilingual neural voices, API key required
    - Google Cloud TTS: Wavenet/Neural2 voices, API key required
    - TikTok: Credential-free voice catalog, always available

Key Features:
    - Provider fallback chains with classified error kinds
    - Priority queue with one-at-a-time playback
    - Per-user permissions (blacklist, voice assignment, whitelist, team level)
    - Sliding-window rate limiting
    - Language detection for automatic voice selection
    - Multi-language profanity filter
    - HTTP + Server-Sent Events adapter (/v1/tts/*)

Example Usage:
    >>> from tts_relay.core.config import Settings
    >>> from tts_relay.services.relay_service import RelayService, SpeakRequest
    >>>
    >>> service = RelayService(Settings(raw={}))
    >>> ack = service.submit(SpeakRequest(text="hello chat", user_id="u1"))
    >>> ack.position
    1
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
