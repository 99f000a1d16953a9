"""
Utilities Package.

Provides anti-bot challenge detection for fetched responses.
"""

from .challenge_detector import (
    classify_response,
    combine_confidence,
    find_challenge_headers,
    find_challenge_phrases,
    CHALLENGE_PHRASES,
    SUGGESTED_ACTIONS,
)

__all__ = [
    "classify_response",
    "combine_confidence",
    "find_challenge_headers",
    "find_challenge_phrases",
    "CHALLENGE_PHRASES",
    "SUGGESTED_ACTIONS",
]
