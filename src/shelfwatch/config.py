from dotenv import load_dotenv
from dataclasses import dataclass, field, replace
from typing import Any, Dict
from pathlib import Path
import json
import os

from shelfwatch.constants import (
    DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    MAX_BACKOFF_DELAY_SECONDS,
    MAX_JITTER_SECONDS,
    MAX_REDIRECTS,
    NETWORK_RETRY_DELAY_SECONDS,
    PLATFORM_BASE_DELAY_SECONDS,
)

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages process-level settings loaded from environment variables.
    """
    LOG_LEVEL = os.getenv("SHELFWATCH_LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("SHELFWATCH_LOG_FILE")

    # Where solution config overrides are persisted between sessions
    STATE_DIR = os.getenv("SHELFWATCH_STATE_DIR", str(Path.home() / ".shelfwatch"))

    # Optional replacement for the bundled solutions.yaml
    CATALOG_PATH = os.getenv("SHELFWATCH_CATALOG_PATH")

    USER_AGENT = os.getenv("USER_AGENT")


settings = Settings()


def _coerce(value: str, field_type: Any) -> Any:
    """Convert an environment string to a scalar field type."""
    if field_type in (bool, "bool"):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if field_type in (int, "int"):
        return int(value)
    if field_type in (float, "float"):
        return float(value)
    if field_type in (str, "str"):
        return value
    raise ValueError(f"unsupported field type {field_type!r}")


@dataclass
class EngineThresholds:
    """Heuristic constants for detection scoring and suggestion ranking."""

    # Detection confidence buckets: <= low_max is low, <= medium_max is medium
    confidence_low_max: float = 0.3
    confidence_medium_max: float = 0.7
    confidence_low_factor: float = 0.7
    confidence_medium_factor: float = 1.0
    confidence_high_factor: float = 1.3

    # Boost when a solution lists the detected type itself
    direct_match_boost: float = 1.2

    # Priority weights
    priority_weight_low: float = 0.8
    priority_weight_medium: float = 1.0
    priority_weight_high: float = 1.3
    priority_weight_critical: float = 1.5

    # Risk penalties
    risk_penalty_low: float = 1.0
    risk_penalty_medium: float = 0.95
    risk_penalty_high: float = 0.9

    # Blend in observed success rate once this many samples exist
    min_effectiveness_samples: int = 6
    heuristic_score_weight: float = 0.3
    observed_rate_weight: float = 0.7

    # Urgency / grouping
    immediate_confidence: float = 0.8
    recommended_min_score: int = 70

    # Effectiveness tracking (percent)
    neutral_success_rate: float = 50.0
    improving_rate: float = 70.0
    declining_rate: float = 30.0
    response_time_mode: str = "recent"  # "recent" (two-point) or "cumulative"

    # Check conflicts from both sides regardless of which entry declares them
    symmetric_conflicts: bool = True

    # Classifier
    max_redirects: int = MAX_REDIRECTS

    # Simulated application latency per implementation complexity (seconds)
    latency_simple_seconds: float = 0.0
    latency_moderate_seconds: float = 1.0
    latency_complex_seconds: float = 2.0

    @property
    def priority_weights(self) -> Dict[str, float]:
        return {
            "low": self.priority_weight_low,
            "medium": self.priority_weight_medium,
            "high": self.priority_weight_high,
            "critical": self.priority_weight_critical,
        }

    @property
    def risk_penalties(self) -> Dict[str, float]:
        return {
            "low": self.risk_penalty_low,
            "medium": self.risk_penalty_medium,
            "high": self.risk_penalty_high,
        }

    @property
    def application_latency(self) -> Dict[str, float]:
        return {
            "simple": self.latency_simple_seconds,
            "moderate": self.latency_moderate_seconds,
            "complex": self.latency_complex_seconds,
        }

    def confidence_factor(self, confidence: float) -> float:
        """Map a detection confidence to its bucket multiplier."""
        if confidence <= self.confidence_low_max:
            return self.confidence_low_factor
        if confidence <= self.confidence_medium_max:
            return self.confidence_medium_factor
        return self.confidence_high_factor

    @classmethod
    def from_env(cls) -> "EngineThresholds":
        """Load thresholds from environment variables.

        Environment variables should be prefixed with SHELFWATCH_THRESHOLD_
        e.g., SHELFWATCH_THRESHOLD_MIN_EFFECTIVENESS_SAMPLES=10

        Returns:
            EngineThresholds with values from environment
        """
        thresholds = cls()
        prefix = "SHELFWATCH_THRESHOLD_"

        for field_name, field_def in thresholds.__dataclass_fields__.items():
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue
            try:
                setattr(thresholds, field_name, _coerce(env_value, field_def.type))
            except ValueError:
                pass  # Keep default if conversion fails

        return thresholds

    @classmethod
    def from_file(cls, path: str) -> "EngineThresholds":
        """Load thresholds from a JSON configuration file.

        Args:
            path: Path to JSON configuration file

        Returns:
            EngineThresholds with values from file
        """
        thresholds = cls()
        file_path = Path(path)

        if not file_path.exists():
            return thresholds

        with open(file_path, 'r') as f:
            config = json.load(f)

        threshold_config = config.get('thresholds', config)

        for field_name in thresholds.__dataclass_fields__:
            if field_name in threshold_config:
                setattr(thresholds, field_name, threshold_config[field_name])

        return thresholds

    def to_dict(self) -> dict:
        """Convert thresholds to dictionary."""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }

    def save_to_file(self, path: str) -> None:
        """Save current thresholds to a JSON file.

        Args:
            path: Path to save configuration
        """
        with open(path, 'w') as f:
            json.dump({'thresholds': self.to_dict()}, f, indent=2)


@dataclass
class RetryConfig:
    """Retry/backoff policy for one monitored target (seconds)."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    default_base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    platform_base_delays: Dict[str, float] = field(
        default_factory=lambda: dict(PLATFORM_BASE_DELAY_SECONDS)
    )
    max_jitter: float = MAX_JITTER_SECONDS
    max_delay: float = MAX_BACKOFF_DELAY_SECONDS
    network_retry_delay: float = NETWORK_RETRY_DELAY_SECONDS
    attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS

    def base_delay_for(self, platform: str) -> float:
        return self.platform_base_delays.get(platform, self.default_base_delay)

    def with_backoff_parameters(self, parameters: Dict[str, Any]) -> "RetryConfig":
        """Derive a config from exponential_backoff solution parameters.

        Solution parameters are expressed in milliseconds; jitter is a
        fraction of the base delay.
        """
        base_ms = parameters.get("base_delay_ms")
        max_ms = parameters.get("max_delay_ms")
        jitter = parameters.get("jitter")

        updated = replace(self, platform_base_delays=dict(self.platform_base_delays))
        if base_ms is not None:
            base = float(base_ms) / 1000.0
            updated.default_base_delay = base
            updated.platform_base_delays = {p: base for p in updated.platform_base_delays}
        if max_ms is not None:
            updated.max_delay = float(max_ms) / 1000.0
        if jitter is not None:
            updated.max_jitter = updated.default_base_delay * float(jitter)
        return updated

    @classmethod
    def from_env(cls) -> "RetryConfig":
        """Load retry settings from SHELFWATCH_RETRY_* environment variables.

        Per-platform base delays use SHELFWATCH_RETRY_BASE_DELAY_<PLATFORM>.
        """
        config = cls()
        prefix = "SHELFWATCH_RETRY_"

        for field_name, field_def in config.__dataclass_fields__.items():
            if field_name == "platform_base_delays":
                continue
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue
            try:
                setattr(config, field_name, _coerce(env_value, field_def.type))
            except ValueError:
                pass

        for platform in list(config.platform_base_delays):
            env_value = os.getenv(f"{prefix}BASE_DELAY_{platform.upper()}")
            if env_value is None:
                continue
            try:
                config.platform_base_delays[platform] = float(env_value)
            except ValueError:
                pass

        return config


# Global default thresholds instance
default_thresholds = EngineThresholds()
