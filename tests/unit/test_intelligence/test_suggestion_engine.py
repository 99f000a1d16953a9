"""Unit tests for the suggestion engine.

Tests scoring, urgency, the applicability gate, grouping and settings sync.
"""

import json

import pytest

from shelfwatch.config import EngineThresholds
from shelfwatch.intelligence.catalog import load_catalog
from shelfwatch.intelligence.suggestion_engine import (
    DEFAULT_APPLICATION_STEPS,
    MonitorSettings,
    SolutionEngine,
    calculate_relevance_score,
    determine_urgency,
    estimated_impact,
)
from shelfwatch.models import DetectionResult, DetectionType, SolutionEffectiveness, Urgency


def make_detection(detection_type, confidence=0.9, platform="amazon"):
    detection_type = DetectionType(detection_type)
    return DetectionResult(
        is_blocked=detection_type != DetectionType.NONE,
        detection_type=detection_type,
        confidence=confidence if detection_type != DetectionType.NONE else 0.0,
        platform=platform,
    )


@pytest.fixture(scope="module")
def catalog():
    return load_catalog()


@pytest.fixture
def engine(catalog):
    """Engine with no application latency."""
    thresholds = EngineThresholds(latency_moderate_seconds=0.0, latency_complex_seconds=0.0)
    return SolutionEngine(catalog=catalog, thresholds=thresholds)


class TestRelevanceScore:
    """Tests for calculate_relevance_score."""

    def test_rate_limit_increase_delays_is_clamped(self, catalog):
        """Test 85 x 1.3 x 1.2 x 1.3 x 1.0 clamps to 100."""
        score = calculate_relevance_score(
            catalog.get("increase_delays"), make_detection("rate_limit", 0.9)
        )
        assert score == 100

    def test_unclamped_score(self, catalog):
        """Test 45 x 1.0 x 1.2 x 0.8 x 1.0 = 43.2 rounds to 43."""
        score = calculate_relevance_score(
            catalog.get("accept_language_variation"), make_detection("platform_specific", 0.5)
        )
        assert score == 43

    def test_low_confidence_and_indirect_match(self, catalog):
        """Test 70 x 0.7 x 1.0 x 1.0 = 49 with no direct match."""
        score = calculate_relevance_score(
            catalog.get("reduce_concurrency"), make_detection("captcha", 0.3)
        )
        assert score == 49

    def test_risk_penalty(self, catalog):
        # custom_browser_headers: 70 x 1.0 x 1.2 x 1.0 x 0.95 = 79.8
        score = calculate_relevance_score(
            catalog.get("custom_browser_headers"), make_detection("js_challenge", 0.5)
        )
        assert score == 80

    def test_observed_rate_blends_after_enough_samples(self, catalog):
        """Test that six samples switch on the 0.3/0.7 blend."""
        solution = catalog.get("increase_delays")
        detection = make_detection("rate_limit", 0.9)
        record = SolutionEffectiveness(
            solution_id="increase_delays",
            detection_type=DetectionType.RATE_LIMIT,
            platform="amazon",
            failure_count=6,
            total_attempts=6,
            success_rate=0.0,
        )

        # 172.38 x 0.3 + 0 x 0.7 = 51.714
        assert calculate_relevance_score(solution, detection, record) == 52

        record.total_attempts = 5
        assert calculate_relevance_score(solution, detection, record) == 100

    def test_blend_threshold_is_configurable(self, catalog):
        thresholds = EngineThresholds(min_effectiveness_samples=2)
        record = SolutionEffectiveness(
            solution_id="increase_delays",
            detection_type=DetectionType.RATE_LIMIT,
            platform="amazon",
            total_attempts=2,
            success_rate=0.0,
        )
        score = calculate_relevance_score(
            catalog.get("increase_delays"), make_detection("rate_limit"), record, thresholds
        )
        assert score == 52

    @pytest.mark.parametrize("confidence", [0.01, 0.3, 0.31, 0.7, 0.71, 1.0])
    @pytest.mark.parametrize("rate", [None, 0.0, 50.0, 100.0])
    def test_score_always_in_range(self, catalog, confidence, rate):
        for detection_type in DetectionType:
            if detection_type == DetectionType.NONE:
                continue
            detection = make_detection(detection_type, confidence)
            for solution in catalog:
                record = None
                if rate is not None:
                    record = SolutionEffectiveness(
                        solution_id=solution.id,
                        detection_type=detection_type,
                        platform="amazon",
                        total_attempts=10,
                        success_rate=rate,
                    )
                score = calculate_relevance_score(solution, detection, record)
                assert 0 <= score <= 100


class TestUrgency:
    """Tests for the urgency rule table."""

    def test_rate_limit_high_priority(self, catalog):
        urgency = determine_urgency(catalog.get("increase_delays"), make_detection("rate_limit", 0.9))
        assert urgency == Urgency.HIGH

    def test_critical_with_high_confidence(self, catalog):
        urgency = determine_urgency(catalog.get("vpn_recommendation"), make_detection("cloudflare", 0.9))
        assert urgency == Urgency.IMMEDIATE

    def test_critical_at_confidence_boundary(self, catalog):
        """Test that confidence of exactly 0.8 does not make a critical entry immediate."""
        urgency = determine_urgency(catalog.get("vpn_recommendation"), make_detection("cloudflare", 0.8))
        assert urgency == Urgency.HIGH

    def test_captcha_critical_is_immediate_at_low_confidence(self, catalog):
        urgency = determine_urgency(catalog.get("captcha_notification"), make_detection("captcha", 0.3))
        assert urgency == Urgency.IMMEDIATE

    def test_ip_block_non_critical_is_high(self, catalog):
        urgency = determine_urgency(catalog.get("increase_delays"), make_detection("ip_block", 0.6))
        assert urgency == Urgency.HIGH

    @pytest.mark.parametrize(
        "solution_id,expected",
        [
            ("rotate_user_agents", Urgency.MEDIUM),  # high
            ("random_timing_jitter", Urgency.MEDIUM),  # medium
            ("accept_language_variation", Urgency.LOW),  # low
        ],
    )
    def test_priority_fallback(self, catalog, solution_id, expected):
        assert determine_urgency(catalog.get(solution_id), make_detection("cloudflare", 0.5)) == expected


class TestGenerateSuggestions:
    """Tests for SolutionEngine.generate_suggestions."""

    def test_rate_limit_scenario(self, engine):
        """Test that increase_delays scores 100 with high urgency for a 429."""
        grouped = engine.generate_suggestions(make_detection("rate_limit", 0.9))
        suggestion = grouped.find("increase_delays")

        assert suggestion.relevance_score == 100
        assert suggestion.urgency == Urgency.HIGH
        assert suggestion.can_apply_now is True
        assert suggestion.reason_if_disabled is None
        assert grouped.group_of("increase_delays") == "recommended"

    def test_partition(self, engine):
        """Test every candidate lands in exactly one group."""
        for detection_type in DetectionType:
            for platform in ("amazon", "walmart"):
                detection = make_detection(detection_type, 0.75, platform)
                for is_desktop in (False, True):
                    candidates = engine.suggestions.candidates(detection, is_desktop)
                    grouped = engine.generate_suggestions(detection, is_desktop=is_desktop)
                    ids = [s.solution_id for s in grouped]

                    assert len(ids) == len(set(ids))
                    assert set(ids) == {s.id for s in candidates}

    def test_platform_case_does_not_split_history(self, engine):
        """Test that outcomes reported as 'Amazon' blend into amazon suggestions."""
        for _ in range(6):
            engine.update_effectiveness("increase_delays", "rate_limit", "Amazon", False)

        grouped = engine.generate_suggestions(make_detection("rate_limit", 0.9))

        assert grouped.find("increase_delays").relevance_score == 52

    def test_groups_sorted_by_score(self, engine):
        grouped = engine.generate_suggestions(make_detection("cloudflare", 0.5))
        for name in grouped.GROUP_NAMES:
            scores = [s.relevance_score for s in getattr(grouped, name)]
            assert scores == sorted(scores, reverse=True)

    def test_idempotent(self, engine):
        detection = make_detection("platform_specific", 0.6)
        engine.update_effectiveness("rotate_user_agents", "platform_specific", "amazon", True)

        first = engine.generate_suggestions(detection).to_dict()
        second = engine.generate_suggestions(detection).to_dict()

        assert first == second

    def test_does_not_mutate_state(self, engine):
        before = engine.snapshot()
        engine.generate_suggestions(make_detection("captcha", 0.95))
        assert engine.snapshot() == before

    def test_unblocked_detection(self, engine):
        """Test that a clean verdict still yields suggestions without raising."""
        grouped = engine.generate_suggestions(make_detection("none"))
        assert grouped.find("random_timing_jitter") is not None

    def test_unknown_platform(self, engine):
        grouped = engine.generate_suggestions(make_detection("rate_limit", 0.9, platform="target"))

        assert grouped.find("increase_delays") is not None
        assert grouped.find("amazon_cookie_management") is None

    def test_platform_filter(self, engine):
        grouped = engine.generate_suggestions(make_detection("platform_specific", 0.6, "walmart"))

        assert grouped.find("walmart_session_persistence") is not None
        assert grouped.find("amazon_cookie_management") is None

    def test_desktop_only_filtered_on_web(self, engine):
        detection = make_detection("ip_block", 0.6)

        assert engine.generate_suggestions(detection, is_desktop=False).find("enable_proxy_rotation") is None
        assert engine.generate_suggestions(detection, is_desktop=True).find("enable_proxy_rotation") is not None

    def test_captcha_grouping(self, engine):
        grouped = engine.generate_suggestions(make_detection("captcha", 0.88))

        assert [s.solution_id for s in grouped.immediate][0] == "captcha_notification"
        assert grouped.group_of("increase_delays") == "recommended"

    def test_suggestion_carries_config_snapshot(self, engine):
        grouped = engine.generate_suggestions(make_detection("rate_limit", 0.9))
        suggestion = grouped.find("increase_delays")
        suggestion.user_config.parameters["min_delay_ms"] = 1

        assert engine.get_solution_config("increase_delays").parameters["min_delay_ms"] == 2000

    def test_observed_failures_demote_solution(self, engine):
        for _ in range(6):
            engine.update_effectiveness("increase_delays", "rate_limit", "amazon", False)

        suggestion = engine.generate_suggestions(make_detection("rate_limit", 0.9)).find("increase_delays")

        assert suggestion.relevance_score == 52
        assert suggestion.user_config.failure_count == 6
        assert suggestion.user_config.effectiveness == 0.0

    def test_effectiveness_is_per_platform(self, engine):
        for _ in range(6):
            engine.update_effectiveness("increase_delays", "rate_limit", "walmart", False)

        suggestion = engine.generate_suggestions(make_detection("rate_limit", 0.9, "amazon")).find("increase_delays")
        assert suggestion.relevance_score == 100


class TestApplicabilityGate:
    """Tests for canApplyNow and its reasons."""

    def test_disabled_solution(self, engine):
        engine.update_solution_config("increase_delays", {"enabled": False})
        suggestion = engine.generate_suggestions(make_detection("rate_limit")).find("increase_delays")

        assert suggestion.is_enabled is False
        assert suggestion.can_apply_now is False
        assert suggestion.reason_if_disabled == "Solution is disabled in settings"

    def test_manual_confirmation(self, engine):
        suggestion = engine.generate_suggestions(make_detection("ip_block", 0.6)).find("vpn_recommendation")

        assert suggestion.is_enabled is True
        assert suggestion.can_apply_now is False
        assert suggestion.reason_if_disabled == "Requires manual confirmation"

    def test_auto_apply_clears_manual_confirmation(self, engine):
        engine.update_solution_config("captcha_notification", {"auto_apply": True})
        suggestion = engine.generate_suggestions(make_detection("captcha")).find("captcha_notification")

        assert suggestion.can_apply_now is True

    def test_disabled_dependency(self, engine):
        """Test that a disabled dependency blocks with a reason naming it."""
        engine.update_solution_config("custom_browser_headers", {"enabled": False})
        suggestion = engine.generate_suggestions(make_detection("platform_specific", 0.6)).find(
            "amazon_cookie_management"
        )

        assert suggestion.can_apply_now is False
        assert suggestion.reason_if_disabled == 'Requires "Add Custom Browser Headers" to be enabled'

    def test_conflicting_solutions_both_blocked(self, engine):
        """Test that two enabled, conflicting solutions are both blocked."""
        grouped = engine.generate_suggestions(make_detection("platform_specific", 0.6, "amazon"))
        mobile = grouped.find("enable_mobile_agents")
        js = grouped.find("js_challenge_mitigation")

        assert mobile.can_apply_now is False
        assert js.can_apply_now is False
        assert mobile.reason_if_disabled == 'Conflicts with enabled solution "JavaScript Challenge Mitigation"'
        assert js.reason_if_disabled == 'Conflicts with enabled solution "Enable Mobile User Agents"'

    def test_conflict_cleared_when_other_disabled(self, engine):
        engine.update_solution_config("enable_mobile_agents", {"enabled": False})
        js = engine.generate_suggestions(make_detection("platform_specific", 0.6)).find("js_challenge_mitigation")

        assert js.can_apply_now is True

    def test_declared_direction_only(self):
        thresholds = EngineThresholds(symmetric_conflicts=False)
        engine = SolutionEngine(thresholds=thresholds)
        grouped = engine.generate_suggestions(make_detection("platform_specific", 0.6, "amazon"))

        assert grouped.find("js_challenge_mitigation").can_apply_now is True
        assert grouped.find("enable_mobile_agents").can_apply_now is False


class TestPresentation:
    """Tests for impact text and application steps."""

    def test_impact_bands(self, catalog):
        assert estimated_impact(catalog.get("increase_delays"), make_detection("rate_limit", 0.9)) == (
            "High likelihood of resolving the detection"
        )
        assert estimated_impact(catalog.get("randomize_headers"), make_detection("cloudflare", 0.5)) == (
            "Good chance of improving detection avoidance"
        )
        assert estimated_impact(catalog.get("accept_language_variation"), make_detection("cloudflare", 0.9)) == (
            "May help reduce detection frequency"
        )

    def test_specific_steps(self, engine):
        suggestion = engine.generate_suggestions(make_detection("rate_limit")).find("increase_delays")
        assert suggestion.application_steps[0] == "Adjust minimum and maximum delay settings"

    def test_default_steps(self, engine):
        suggestion = engine.generate_suggestions(make_detection("cloudflare")).find("randomize_headers")
        assert suggestion.application_steps == list(DEFAULT_APPLICATION_STEPS)


class TestMonitorSettings:
    """Tests for apply_monitor_settings."""

    def test_delay_settings(self, engine):
        engine.apply_monitor_settings(
            MonitorSettings(enable_dynamic_delays=False, min_request_delay=4000, max_request_delay=9000)
        )
        config = engine.get_solution_config("increase_delays")

        assert config.enabled is False
        assert config.parameters["min_delay_ms"] == 4000
        assert config.parameters["max_delay_ms"] == 9000
        assert config.parameters["multiplier"] == 1.5

    def test_user_agent_flags(self, engine):
        engine.apply_monitor_settings(MonitorSettings(enable_mobile_user_agents=True))
        params = engine.get_solution_config("rotate_user_agents").parameters

        assert params["include_mobile"] is True
        assert params["rotation_interval"] == 10

    def test_proxy_urls(self, engine):
        urls = ["http://proxy-1:8080", "http://proxy-2:8080"]
        engine.apply_monitor_settings(
            MonitorSettings(enable_proxy_rotation=True, proxy_rotation_urls=json.dumps(urls))
        )
        config = engine.get_solution_config("enable_proxy_rotation")

        assert config.enabled is True
        assert config.parameters["proxy_urls"] == urls

    def test_invalid_proxy_json_is_ignored(self, engine):
        engine.apply_monitor_settings(
            MonitorSettings(enable_proxy_rotation=True, proxy_rotation_urls="[not json")
        )
        config = engine.get_solution_config("enable_proxy_rotation")

        assert config.enabled is True
        assert "proxy_urls" not in config.parameters

    def test_cookie_management_gates_workarounds(self, engine):
        engine.apply_monitor_settings(MonitorSettings(enable_cookie_management=False))

        assert engine.get_solution_config("amazon_cookie_management").enabled is False
        assert engine.get_solution_config("walmart_session_persistence").enabled is False

    def test_auto_apply_switches(self, engine):
        engine.apply_monitor_settings(
            MonitorSettings(enable_auto_solution_application=True, auto_apply_on_detection=True)
        )

        assert engine.get_solution_config("increase_delays").auto_apply is True
        # Needs a person even when auto-apply is on
        assert engine.get_solution_config("captcha_notification").auto_apply is False
        # Not auto-appliable at all; left untouched
        assert engine.get_solution_config("vpn_recommendation").auto_apply is False

    def test_auto_apply_off_by_default(self, engine):
        engine.apply_monitor_settings(MonitorSettings())
        assert engine.get_solution_config("increase_delays").auto_apply is False
