"""
Suggestion Engine.

Turns a DetectionResult into grouped, scored remediation suggestions using
the catalog, the current solution configs and observed effectiveness.

SolutionEngine wires the catalog, config store, effectiveness tracker and
executor together behind the operations the rest of the application uses.

Usage:
    engine = SolutionEngine()
    grouped = engine.generate_suggestions(detection, is_desktop=True)
    for suggestion in grouped.immediate:
        print(suggestion.solution.name, suggestion.relevance_score)
    result = await engine.apply_solution("increase_delays")
"""

import json
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from shelfwatch.config import EngineThresholds, default_thresholds, settings
from shelfwatch.intelligence.catalog import SolutionCatalog, SolutionDefinition, load_catalog
from shelfwatch.intelligence.config_store import JsonConfigPersistence, SolutionConfigStore
from shelfwatch.intelligence.effectiveness import EffectivenessKey, EffectivenessTracker
from shelfwatch.intelligence.executor import RemediationHandler, SolutionExecutor
from shelfwatch.models import (
    DetectionResult,
    DetectionType,
    GroupedSuggestions,
    SolutionApplicationResult,
    SolutionConfig,
    SolutionEffectiveness,
    SolutionSuggestion,
    Urgency,
)

logger = logging.getLogger(__name__)


DEFAULT_APPLICATION_STEPS = (
    "Review solution configuration",
    "Apply recommended settings",
    "Test solution effectiveness",
    "Monitor results",
)

# Detection types that always need attention from a person
HUMAN_ATTENTION_TYPES = frozenset({DetectionType.IP_BLOCK, DetectionType.CAPTCHA})


# =============================================================================
# Rule tables (evaluated top-down, first match wins)
# =============================================================================

Rule = Tuple[str, Callable[..., bool], Any]

# (name, predicate(solution, detection, thresholds), urgency)
URGENCY_RULES: List[Rule] = [
    (
        "critical_high_confidence",
        lambda s, d, t: s.priority == "critical" and d.confidence > t.immediate_confidence,
        Urgency.IMMEDIATE,
    ),
    (
        "critical_needs_attention",
        lambda s, d, t: d.detection_type in HUMAN_ATTENTION_TYPES and s.priority == "critical",
        Urgency.IMMEDIATE,
    ),
    (
        "needs_attention",
        lambda s, d, t: d.detection_type in HUMAN_ATTENTION_TYPES,
        Urgency.HIGH,
    ),
    (
        "rate_limit_high_priority",
        lambda s, d, t: d.detection_type == DetectionType.RATE_LIMIT and s.priority == "high",
        Urgency.HIGH,
    ),
]

PRIORITY_URGENCY = {
    "critical": Urgency.HIGH,
    "high": Urgency.MEDIUM,
    "medium": Urgency.MEDIUM,
    "low": Urgency.LOW,
}

# (group name, predicate(suggestion, thresholds))
GROUP_RULES: List[Tuple[str, Callable[[SolutionSuggestion, EngineThresholds], bool]]] = [
    ("immediate", lambda s, t: s.urgency == Urgency.IMMEDIATE),
    ("recommended", lambda s, t: s.urgency == Urgency.HIGH and s.relevance_score >= t.recommended_min_score),
    ("optional", lambda s, t: s.urgency == Urgency.MEDIUM),
    ("optional", lambda s, t: s.urgency == Urgency.HIGH and s.relevance_score < t.recommended_min_score),
    ("advanced", lambda s, t: s.urgency == Urgency.LOW),
    ("advanced", lambda s, t: s.solution.implementation_complexity == "complex"),
]
FALLBACK_GROUP = "advanced"


def determine_urgency(
    solution: SolutionDefinition,
    detection: DetectionResult,
    thresholds: EngineThresholds = default_thresholds,
) -> Urgency:
    for _name, predicate, urgency in URGENCY_RULES:
        if predicate(solution, detection, thresholds):
            return urgency
    return PRIORITY_URGENCY[solution.priority]


def group_for(suggestion: SolutionSuggestion, thresholds: EngineThresholds = default_thresholds) -> str:
    for group, predicate in GROUP_RULES:
        if predicate(suggestion, thresholds):
            return group
    return FALLBACK_GROUP


def calculate_relevance_score(
    solution: SolutionDefinition,
    detection: DetectionResult,
    effectiveness: Optional[SolutionEffectiveness] = None,
    thresholds: EngineThresholds = default_thresholds,
) -> int:
    """Score how well a solution fits a detection, 0-100.

    Args:
        solution: Catalog entry
        detection: Verdict being remediated
        effectiveness: Observed record for (solution, type, platform), if any
        thresholds: Heuristic constants

    Returns:
        Relevance score clamped to [0, 100] and rounded half up
    """
    score = solution.estimated_effectiveness
    score *= thresholds.confidence_factor(detection.confidence)

    if detection.detection_type in solution.detection_types:
        score *= thresholds.direct_match_boost

    score *= thresholds.priority_weights[solution.priority]

    if effectiveness is not None and effectiveness.total_attempts >= thresholds.min_effectiveness_samples:
        score = (
            score * thresholds.heuristic_score_weight
            + effectiveness.success_rate * thresholds.observed_rate_weight
        )

    score *= thresholds.risk_penalties[solution.risk_level]

    clamped = min(100.0, max(0.0, score))
    return int(clamped + 0.5)


def estimated_impact(solution: SolutionDefinition, detection: DetectionResult) -> str:
    effectiveness = solution.estimated_effectiveness
    confidence = detection.confidence

    if effectiveness >= 80 and confidence >= 0.7:
        return "High likelihood of resolving the detection"
    if effectiveness >= 60 and confidence >= 0.5:
        return "Good chance of improving detection avoidance"
    if effectiveness >= 40:
        return "May help reduce detection frequency"
    return "Limited impact expected"


def application_steps(solution: SolutionDefinition) -> List[str]:
    return list(solution.application_steps or DEFAULT_APPLICATION_STEPS)


class SuggestionEngine:
    """
    Ranks, gates and groups catalog entries against a detection.

    generate() never mutates state. It copies configs and effectiveness under
    the shared lock once, then works on that snapshot.
    """

    def __init__(
        self,
        catalog: SolutionCatalog,
        config_store: SolutionConfigStore,
        tracker: EffectivenessTracker,
        thresholds: Optional[EngineThresholds] = None,
    ):
        self.catalog = catalog
        self.config_store = config_store
        self.tracker = tracker
        self.thresholds = thresholds or default_thresholds

    def candidates(self, detection: DetectionResult, is_desktop: bool = False) -> List[SolutionDefinition]:
        """Solutions indexed for the detection type plus the platform's list."""
        merged: Dict[str, SolutionDefinition] = {}
        for solution in self.catalog.for_detection(detection.detection_type):
            merged.setdefault(solution.id, solution)
        for solution in self.catalog.for_platform(detection.platform):
            merged.setdefault(solution.id, solution)
        return self.catalog.compatible_with(merged.values(), detection.platform, is_desktop)

    def generate(self, detection: DetectionResult, is_desktop: bool = False) -> GroupedSuggestions:
        """Build grouped suggestions for a detection.

        Args:
            detection: Classified fetch attempt
            is_desktop: Whether desktop-only remediations can be used

        Returns:
            GroupedSuggestions; each candidate appears in exactly one group
        """
        with self.config_store.lock:
            configs = self.config_store.snapshot()
            records = self.tracker.snapshot()

        suggestions = [
            self._suggest(solution, detection, configs, records)
            for solution in self.candidates(detection, is_desktop)
        ]
        return self._group(suggestions)

    def _suggest(
        self,
        solution: SolutionDefinition,
        detection: DetectionResult,
        configs: Dict[str, SolutionConfig],
        records: Dict[EffectivenessKey, SolutionEffectiveness],
    ) -> SolutionSuggestion:
        config = configs[solution.id]
        record = records.get((solution.id, detection.detection_type, detection.platform.lower()))
        reason = self.disabled_reason(solution, configs)

        return SolutionSuggestion(
            solution=solution,
            relevance_score=calculate_relevance_score(solution, detection, record, self.thresholds),
            urgency=determine_urgency(solution, detection, self.thresholds),
            user_config=config,
            is_enabled=config.enabled,
            can_apply_now=reason is None,
            reason_if_disabled=reason,
            estimated_impact=estimated_impact(solution, detection),
            application_steps=application_steps(solution),
        )

    def disabled_reason(
        self,
        solution: SolutionDefinition,
        configs: Dict[str, SolutionConfig],
    ) -> Optional[str]:
        """First failing applicability check, or None if the solution can be applied."""
        config = configs[solution.id]
        if not config.enabled:
            return "Solution is disabled in settings"

        if solution.requires_user_interaction and not config.auto_apply:
            return "Requires manual confirmation"

        for dep_id in sorted(self.catalog.dependencies_of(solution.id)):
            dep_config = configs.get(dep_id)
            if dep_config is None or not dep_config.enabled:
                dep = self.catalog.get(dep_id)
                return f'Requires "{dep.name if dep else dep_id}" to be enabled'

        for other_id in sorted(self.catalog.conflicts_of(solution.id)):
            other_config = configs.get(other_id)
            if other_config is not None and other_config.enabled:
                return f'Conflicts with enabled solution "{self.catalog.get(other_id).name}"'

        return None

    def _group(self, suggestions: List[SolutionSuggestion]) -> GroupedSuggestions:
        grouped = GroupedSuggestions()
        for suggestion in suggestions:
            getattr(grouped, group_for(suggestion, self.thresholds)).append(suggestion)

        for name in GroupedSuggestions.GROUP_NAMES:
            getattr(grouped, name).sort(key=lambda s: s.relevance_score, reverse=True)
        return grouped


# =============================================================================
# Settings sync
# =============================================================================

class MonitorSettings(BaseModel):
    """
    Anti-detection preferences from the monitor's settings screen.

    Delay values are milliseconds. proxy_rotation_urls is a JSON array of
    proxy URLs as stored by the settings form.
    """

    enable_user_agent_rotation: bool = True
    enable_desktop_user_agents: bool = True
    enable_mobile_user_agents: bool = False
    enable_firefox_user_agents: bool = True
    enable_chrome_user_agents: bool = True
    enable_safari_user_agents: bool = False

    enable_dynamic_delays: bool = True
    min_request_delay: int = Field(default=2000, ge=0)
    max_request_delay: int = Field(default=8000, ge=0)

    enable_exponential_backoff: bool = True
    max_backoff_delay: int = Field(default=300000, ge=0)

    enable_header_randomization: bool = True
    enable_accept_language_variation: bool = True
    enable_accept_encoding_variation: bool = False
    enable_custom_headers: bool = False

    enable_proxy_rotation: bool = False
    proxy_rotation_urls: Optional[str] = None

    enable_amazon_workarounds: bool = True
    enable_walmart_workarounds: bool = True
    enable_cookie_management: bool = True
    enable_js_challenge_mitigation: bool = False

    enable_pattern_randomization: bool = True
    enable_request_order_randomization: bool = False
    enable_timing_variation: bool = True

    enable_auto_solution_application: bool = False
    auto_apply_on_detection: bool = False


def settings_to_partials(
    monitor_settings: MonitorSettings,
    catalog: SolutionCatalog,
    configs: Dict[str, SolutionConfig],
) -> Dict[str, Dict[str, Any]]:
    """Translate monitor settings into partial config updates per solution."""
    s = monitor_settings
    partials: Dict[str, Dict[str, Any]] = {}

    def merged(solution_id: str, **params) -> Dict[str, Any]:
        current = configs[solution_id].parameters if solution_id in configs else {}
        return {**current, **params}

    partials["rotate_user_agents"] = {
        "enabled": s.enable_user_agent_rotation,
        "parameters": merged(
            "rotate_user_agents",
            include_desktop=s.enable_desktop_user_agents,
            include_mobile=s.enable_mobile_user_agents,
            include_firefox=s.enable_firefox_user_agents,
            include_chrome=s.enable_chrome_user_agents,
            include_safari=s.enable_safari_user_agents,
        ),
    }
    partials["increase_delays"] = {
        "enabled": s.enable_dynamic_delays,
        "parameters": merged(
            "increase_delays",
            min_delay_ms=s.min_request_delay,
            max_delay_ms=s.max_request_delay,
        ),
    }
    partials["exponential_backoff"] = {
        "enabled": s.enable_exponential_backoff,
        "parameters": merged("exponential_backoff", max_delay_ms=s.max_backoff_delay),
    }
    partials["randomize_headers"] = {
        "enabled": s.enable_header_randomization,
        "parameters": merged(
            "randomize_headers",
            rotate_accept_language=s.enable_accept_language_variation,
            rotate_accept_encoding=s.enable_accept_encoding_variation,
            add_custom_headers=s.enable_custom_headers,
        ),
    }

    proxy_partial: Dict[str, Any] = {"enabled": s.enable_proxy_rotation}
    if s.proxy_rotation_urls:
        try:
            urls = json.loads(s.proxy_rotation_urls)
            proxy_partial["parameters"] = merged("enable_proxy_rotation", proxy_urls=urls)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse proxy rotation URLs: {e}")
    partials["enable_proxy_rotation"] = proxy_partial

    partials["amazon_cookie_management"] = {
        "enabled": s.enable_amazon_workarounds and s.enable_cookie_management,
    }
    partials["walmart_session_persistence"] = {
        "enabled": s.enable_walmart_workarounds and s.enable_cookie_management,
    }
    partials["js_challenge_mitigation"] = {"enabled": s.enable_js_challenge_mitigation}
    partials["randomize_request_patterns"] = {
        "enabled": s.enable_pattern_randomization,
        "parameters": merged(
            "randomize_request_patterns",
            randomize_order=s.enable_request_order_randomization,
            timing_variation=s.enable_timing_variation,
        ),
    }

    auto_apply = s.enable_auto_solution_application and s.auto_apply_on_detection
    for solution in catalog:
        if not solution.can_auto_apply:
            continue
        partial = partials.setdefault(solution.id, {})
        partial["auto_apply"] = auto_apply and not solution.requires_user_interaction

    return {sid: partial for sid, partial in partials.items() if sid in catalog}


# =============================================================================
# Engine facade
# =============================================================================

class SolutionEngine:
    """
    Owns the catalog and all mutable remediation state for one process.

    Construct one per application (or per test); nothing here is global.
    Public operations do not raise for unknown ids or disabled solutions,
    they log and report through their return values instead.
    """

    def __init__(
        self,
        catalog: Optional[SolutionCatalog] = None,
        thresholds: Optional[EngineThresholds] = None,
        persistence: Optional[JsonConfigPersistence] = None,
        handlers: Optional[Dict[str, RemediationHandler]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.thresholds = thresholds or default_thresholds
        self._catalog = catalog or load_catalog(
            settings.CATALOG_PATH, symmetric_conflicts=self.thresholds.symmetric_conflicts
        )
        self._lock = threading.RLock()
        self.config_store = SolutionConfigStore(self._catalog, lock=self._lock, persistence=persistence)
        self.tracker = EffectivenessTracker(self.config_store, self.thresholds, lock=self._lock)
        self.suggestions = SuggestionEngine(self._catalog, self.config_store, self.tracker, self.thresholds)
        self.executor = SolutionExecutor(
            self._catalog, self.config_store, self.thresholds, handlers=handlers, sleep=sleep
        )

    @property
    def catalog(self) -> SolutionCatalog:
        return self._catalog

    def generate_suggestions(self, detection: DetectionResult, is_desktop: bool = False) -> GroupedSuggestions:
        return self.suggestions.generate(detection, is_desktop=is_desktop)

    async def apply_solution(
        self,
        solution_id: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> SolutionApplicationResult:
        return await self.executor.apply(solution_id, parameters)

    def update_solution_config(self, solution_id: str, partial: Dict[str, Any]) -> None:
        self.config_store.update(solution_id, partial)

    def update_effectiveness(
        self,
        solution_id: str,
        detection_type,
        platform: str,
        success: bool,
        response_time_ms: Optional[float] = None,
    ) -> None:
        try:
            detection_type = DetectionType(detection_type)
        except ValueError:
            logger.warning(f"Ignoring effectiveness update with unknown detection type {detection_type!r}")
            return
        if solution_id not in self._catalog:
            logger.warning(f"Ignoring effectiveness update for unknown solution '{solution_id}'")
            return
        if not isinstance(platform, str):
            logger.warning(f"Ignoring effectiveness update with non-string platform {platform!r}")
            return
        self.tracker.update(solution_id, detection_type, platform, success, response_time_ms)

    def get_solution_config(self, solution_id: str) -> Optional[SolutionConfig]:
        return self.config_store.get(solution_id)

    def get_effectiveness_data(self) -> List[SolutionEffectiveness]:
        return self.tracker.all()

    def apply_monitor_settings(self, monitor_settings: MonitorSettings) -> None:
        """Sync solution configs with the monitor's anti-detection settings."""
        with self._lock:
            partials = settings_to_partials(monitor_settings, self._catalog, self.config_store.snapshot())
            updated = self.config_store.update_many(partials)
        logger.info(f"Applied monitor settings to {updated} solution configs")

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of all configs and effectiveness records."""
        with self._lock:
            return {
                "configs": self.config_store.snapshot(),
                "effectiveness": self.tracker.all(),
            }
