"""
Text Moderation and Analysis.

    - language.py: Language detection and language-aware voice selection
    - profanity.py: Multi-language profanity filter
"""
