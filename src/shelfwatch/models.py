"""Data models for detection verdicts, solution state and suggestions."""

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from shelfwatch.intelligence.catalog import SolutionDefinition


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class DetectionType(str, Enum):
    """Kinds of anti-automation responses the classifier recognizes."""
    CLOUDFLARE = "cloudflare"
    AWS_WAF = "aws_waf"
    RATE_LIMIT = "rate_limit"
    IP_BLOCK = "ip_block"
    CAPTCHA = "captcha"
    JS_CHALLENGE = "js_challenge"
    REDIRECT_LOOP = "redirect_loop"
    PLATFORM_SPECIFIC = "platform_specific"  # Blocked but unclassified
    NONE = "none"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    IMMEDIATE = "immediate"


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass
class DetectionResult:
    """Structured verdict for a single fetch attempt."""

    is_blocked: bool
    detection_type: DetectionType
    confidence: float  # 0-1
    platform: str
    response_code: Optional[int] = None
    response_time: float = 0.0  # milliseconds
    timestamp: int = field(default_factory=now_ms)
    suggested_action: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    raw_response: Optional[str] = None

    def __post_init__(self):
        self.detection_type = DetectionType(self.detection_type)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if self.is_blocked == (self.detection_type == DetectionType.NONE):
            raise ValueError(
                f"is_blocked={self.is_blocked} is inconsistent with "
                f"detection_type={self.detection_type.value}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "is_blocked": self.is_blocked,
            "detection_type": self.detection_type.value,
            "confidence": self.confidence,
            "platform": self.platform,
            "response_code": self.response_code,
            "response_time": self.response_time,
            "timestamp": self.timestamp,
            "suggested_action": self.suggested_action,
            "details": self.details,
        }


@dataclass
class SolutionConfig:
    """Mutable user settings for one catalog entry."""

    enabled: bool = True
    auto_apply: bool = False
    parameters: Dict[str, Any] = field(default_factory=dict)
    last_applied: Optional[int] = None  # epoch ms
    success_count: int = 0
    failure_count: int = 0
    effectiveness: float = 50.0  # 0-100

    def copy(self) -> "SolutionConfig":
        """Independent snapshot, including the parameter map."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "auto_apply": self.auto_apply,
            "parameters": copy.deepcopy(self.parameters),
            "last_applied": self.last_applied,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "effectiveness": self.effectiveness,
        }

    @classmethod
    def field_names(cls) -> List[str]:
        return list(cls.__dataclass_fields__)


@dataclass
class SolutionSuggestion:
    """A catalog entry scored and annotated for one detection."""

    solution: "SolutionDefinition"
    relevance_score: int  # 0-100
    urgency: Urgency
    user_config: SolutionConfig
    is_enabled: bool
    can_apply_now: bool
    reason_if_disabled: Optional[str] = None
    estimated_impact: str = ""
    application_steps: List[str] = field(default_factory=list)

    @property
    def solution_id(self) -> str:
        return self.solution.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "solution_id": self.solution.id,
            "name": self.solution.name,
            "category": self.solution.category,
            "priority": self.solution.priority,
            "relevance_score": self.relevance_score,
            "urgency": self.urgency.value,
            "is_enabled": self.is_enabled,
            "can_apply_now": self.can_apply_now,
            "reason_if_disabled": self.reason_if_disabled,
            "estimated_impact": self.estimated_impact,
            "application_steps": list(self.application_steps),
            "user_config": self.user_config.to_dict(),
        }


@dataclass
class GroupedSuggestions:
    """Suggestions partitioned by how soon they should be acted on."""

    immediate: List[SolutionSuggestion] = field(default_factory=list)
    recommended: List[SolutionSuggestion] = field(default_factory=list)
    optional: List[SolutionSuggestion] = field(default_factory=list)
    advanced: List[SolutionSuggestion] = field(default_factory=list)

    GROUP_NAMES = ("immediate", "recommended", "optional", "advanced")

    def __iter__(self) -> Iterator[SolutionSuggestion]:
        for name in self.GROUP_NAMES:
            yield from getattr(self, name)

    def __len__(self) -> int:
        return sum(len(getattr(self, name)) for name in self.GROUP_NAMES)

    def group_of(self, solution_id: str) -> Optional[str]:
        """Name of the group holding the given solution, if any."""
        for name in self.GROUP_NAMES:
            if any(s.solution.id == solution_id for s in getattr(self, name)):
                return name
        return None

    def find(self, solution_id: str) -> Optional[SolutionSuggestion]:
        for suggestion in self:
            if suggestion.solution.id == solution_id:
                return suggestion
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: [s.to_dict() for s in getattr(self, name)]
            for name in self.GROUP_NAMES
        }


@dataclass
class SolutionApplicationResult:
    """Outcome of one apply_solution call."""

    solution_id: str
    success: bool
    message: str
    applied_at: int = field(default_factory=now_ms)
    parameters: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    rollback_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "solution_id": self.solution_id,
            "success": self.success,
            "message": self.message,
            "applied_at": self.applied_at,
            "parameters": self.parameters,
            "error": self.error,
            "rollback_available": self.rollback_available,
        }


@dataclass
class SolutionEffectiveness:
    """Outcome statistics for a (solution, detection type, platform) key."""

    solution_id: str
    detection_type: DetectionType
    platform: str
    success_count: int = 0
    failure_count: int = 0
    total_attempts: int = 0
    success_rate: float = 50.0  # 0-100
    last_updated: int = field(default_factory=now_ms)
    average_response_time: Optional[float] = None  # milliseconds
    response_time_samples: int = 0
    recent_trend: Trend = Trend.STABLE

    @property
    def key(self) -> tuple:
        return (self.solution_id, self.detection_type, self.platform)

    def copy(self) -> "SolutionEffectiveness":
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "solution_id": self.solution_id,
            "detection_type": self.detection_type.value,
            "platform": self.platform,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_attempts": self.total_attempts,
            "success_rate": self.success_rate,
            "last_updated": self.last_updated,
            "average_response_time": self.average_response_time,
            "response_time_samples": self.response_time_samples,
            "recent_trend": self.recent_trend.value,
        }
