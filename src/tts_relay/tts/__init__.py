"""
Synthesis Pipeline Components.

    - engine.py: Engine adapter contract, error kinds and registry
    - engines/: Provider adapters (Speechify, ElevenLabs, Google, TikTok)
    - dispatcher.py: Provider fallback dispatcher
    - queue.py: Priority queue manager and playback loop
    - rate_limiter.py: Per-user sliding-window rate limiter
    - cache.py: Bounded LRU/TTL store shared by the components above
"""
