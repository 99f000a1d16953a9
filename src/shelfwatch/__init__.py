"""Anti-bot detection and remediation for product page monitoring."""

__version__ = "0.1.0"

from shelfwatch.models import (
    DetectionResult,
    DetectionType,
    GroupedSuggestions,
    SolutionApplicationResult,
    SolutionConfig,
    SolutionEffectiveness,
    SolutionSuggestion,
    Trend,
    Urgency,
)
from shelfwatch.config import EngineThresholds, RetryConfig, settings
from shelfwatch.exceptions import (
    ApplicationFailure,
    CatalogValidationError,
    ConfigurationError,
    NetworkError,
    ShelfwatchError,
)

# Detection
from shelfwatch.utils.challenge_detector import classify_response

# Remediation engine
from shelfwatch.intelligence.catalog import SolutionCatalog, SolutionDefinition, load_catalog
from shelfwatch.intelligence.suggestion_engine import MonitorSettings, SolutionEngine

# Fetching
from shelfwatch.infrastructure.detection_logger import DetectionEventLogger
from shelfwatch.infrastructure.http_fetcher import FetchResponse, HttpFetcher
from shelfwatch.infrastructure.retry_controller import FetchOutcome, FetchState, RetryController

__all__ = [
    "DetectionResult",
    "DetectionType",
    "GroupedSuggestions",
    "SolutionApplicationResult",
    "SolutionConfig",
    "SolutionEffectiveness",
    "SolutionSuggestion",
    "Trend",
    "Urgency",
    "EngineThresholds",
    "RetryConfig",
    "settings",
    "ApplicationFailure",
    "CatalogValidationError",
    "ConfigurationError",
    "NetworkError",
    "ShelfwatchError",
    "classify_response",
    "SolutionCatalog",
    "SolutionDefinition",
    "load_catalog",
    "MonitorSettings",
    "SolutionEngine",
    "DetectionEventLogger",
    "FetchResponse",
    "HttpFetcher",
    "FetchOutcome",
    "FetchState",
    "RetryController",
]
