"""
Utility Modules for tts-relay.

    - timeit.py: Performance measurement utilities
"""
