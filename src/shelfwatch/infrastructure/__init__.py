"""
Infrastructure Package.

Provides page fetching, browser-like headers, the retry/backoff controller
and detection event logging.
"""

from .headers import (
    build_browser_headers,
    get_random_user_agent,
    USER_AGENTS,
)
from .http_fetcher import FetchResponse, HttpFetcher
from .detection_logger import (
    DetectionEventLogger,
    RequestStats,
    format_detection_event,
)
from .retry_controller import (
    FetchOutcome,
    FetchState,
    RetryController,
    effective_retry_config,
)

__all__ = [
    # Headers
    "build_browser_headers",
    "get_random_user_agent",
    "USER_AGENTS",
    # Fetching
    "FetchResponse",
    "HttpFetcher",
    # Logging
    "DetectionEventLogger",
    "RequestStats",
    "format_detection_event",
    # Retry
    "FetchOutcome",
    "FetchState",
    "RetryController",
    "effective_retry_config",
]
