"""
Anti-bot detection for fetched product pages.

Classifies a raw HTTP response into a DetectionResult: whether the fetch was
blocked or challenged, by what kind of defense, and how confident we are.

Usage:
    detection = classify_response(body, 429, elapsed_ms=812.0, platform="amazon")
    if detection.is_blocked:
        print(detection.detection_type.value, detection.confidence)
"""
import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from shelfwatch.config import EngineThresholds, default_thresholds
from shelfwatch.constants import (
    AWS_WAF_PHRASES,
    BLOCKING_STATUS_CODES,
    BODY_SAMPLE_CHARS,
    CAPTCHA_PHRASES,
    CHALLENGE_HEADERS,
    CLOUDFLARE_PHRASES,
    GENERIC_BLOCK_PHRASES,
    HEADER_SIGNAL_WEIGHT,
    JS_CHALLENGE_PHRASES,
    PHRASE_SIGNAL_WEIGHTS,
    REDIRECT_SIGNAL_WEIGHT,
    STATUS_FORBIDDEN,
    STATUS_RATE_LIMITED,
    STATUS_SIGNAL_WEIGHTS,
)
from shelfwatch.models import DetectionResult, DetectionType, now_ms

logger = logging.getLogger(__name__)


# =============================================================================
# Challenge Phrases
# =============================================================================

CHALLENGE_PHRASES: Dict[str, Tuple[str, ...]] = {
    "captcha": CAPTCHA_PHRASES,
    "cloudflare": CLOUDFLARE_PHRASES,
    "aws_waf": AWS_WAF_PHRASES,
    "js_challenge": JS_CHALLENGE_PHRASES,
    "generic": GENERIC_BLOCK_PHRASES,
}

# Phrase group -> detection type, in tie-break order
PHRASE_DETECTION_ORDER = (
    ("captcha", DetectionType.CAPTCHA),
    ("cloudflare", DetectionType.CLOUDFLARE),
    ("aws_waf", DetectionType.AWS_WAF),
    ("js_challenge", DetectionType.JS_CHALLENGE),
)

SUGGESTED_ACTIONS = {
    DetectionType.RATE_LIMIT: "Slow down: increase request delays and enable exponential backoff",
    DetectionType.IP_BLOCK: "Change IP address: connect through a VPN or enable proxy rotation",
    DetectionType.CAPTCHA: "CAPTCHA shown: pause monitoring and resolve it manually",
    DetectionType.CLOUDFLARE: "Cloudflare challenge: rotate user agents and add request delays",
    DetectionType.AWS_WAF: "AWS WAF block: back off and randomize request patterns",
    DetectionType.JS_CHALLENGE: "JavaScript challenge: send full browser headers and keep sessions",
    DetectionType.REDIRECT_LOOP: "Redirect loop: clear cookies and reset the session",
    DetectionType.PLATFORM_SPECIFIC: "Blocked by site protection: rotate user agents and slow down",
    DetectionType.NONE: "No action needed",
}


def find_challenge_phrases(body: str) -> Dict[str, List[str]]:
    """Case-insensitive phrase matches in the body, grouped by phrase family."""
    if not body:
        return {}
    body_lower = body.lower()
    matches: Dict[str, List[str]] = {}
    for group, phrases in CHALLENGE_PHRASES.items():
        found = [phrase for phrase in phrases if phrase in body_lower]
        if found:
            matches[group] = found
    return matches


def find_challenge_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Challenge-only response headers, mapped to the phrase family they confirm."""
    if not headers:
        return {}
    lowered = {str(k).lower(): v for k, v in headers.items()}
    return {name: family for name, family in CHALLENGE_HEADERS.items() if name in lowered}


def combine_confidence(weights: List[float]) -> float:
    """Noisy-OR of independent signal strengths, always within [0, 1]."""
    miss = 1.0
    for weight in weights:
        miss *= 1.0 - min(1.0, max(0.0, weight))
    return min(1.0, max(0.0, 1.0 - miss))


def classify_response(
    body: str,
    status_code: Optional[int],
    elapsed_ms: float = 0.0,
    platform: str = "",
    redirect_count: int = 0,
    headers: Optional[Mapping[str, str]] = None,
    thresholds: Optional[EngineThresholds] = None,
    clock: Callable[[], int] = now_ms,
) -> DetectionResult:
    """Classify a fetched response.

    Args:
        body: Response body text
        status_code: HTTP status code, if a response was received
        elapsed_ms: Time taken by the fetch in milliseconds
        platform: Target site id (amazon, walmart, ...)
        redirect_count: Redirects followed to reach the final URL
        headers: Optional response headers
        thresholds: Heuristic constants (redirect threshold)
        clock: Timestamp source in epoch milliseconds

    Returns:
        DetectionResult with is_blocked, detection_type and confidence set
    """
    thresholds = thresholds or default_thresholds
    body = body or ""

    phrase_matches = find_challenge_phrases(body)
    header_matches = find_challenge_headers(headers)
    families = set(phrase_matches) | set(header_matches.values())
    too_many_redirects = redirect_count > thresholds.max_redirects
    blocking_status = status_code in BLOCKING_STATUS_CODES

    signals: List[str] = []
    weights: List[float] = []
    if blocking_status:
        signals.append(f"status_{status_code}")
        weights.append(STATUS_SIGNAL_WEIGHTS.get(status_code, 0.5))
    for group, phrases in phrase_matches.items():
        for phrase in phrases:
            signals.append(f"{group}:{phrase}")
            weights.append(PHRASE_SIGNAL_WEIGHTS[group])
    for header in header_matches:
        signals.append(f"header:{header}")
        weights.append(HEADER_SIGNAL_WEIGHT)
    if too_many_redirects:
        signals.append(f"redirects_{redirect_count}")
        weights.append(REDIRECT_SIGNAL_WEIGHT)

    is_blocked = bool(signals)
    detection_type = _select_detection_type(status_code, families, too_many_redirects, is_blocked)
    confidence = combine_confidence(weights) if is_blocked else 0.0

    details = {
        "signals": signals,
        "matched_phrases": phrase_matches,
        "challenge_headers": sorted(header_matches),
        "redirect_count": redirect_count,
        "body_length": len(body),
    }

    if is_blocked:
        logger.debug(
            f"Blocked response on {platform or 'unknown platform'}: "
            f"{detection_type.value} ({confidence:.2f}) from {len(signals)} signals"
        )

    return DetectionResult(
        is_blocked=is_blocked,
        detection_type=detection_type,
        confidence=confidence,
        platform=platform,
        response_code=status_code,
        response_time=elapsed_ms,
        timestamp=clock(),
        suggested_action=SUGGESTED_ACTIONS[detection_type],
        details=details,
        raw_response=body[:BODY_SAMPLE_CHARS] if is_blocked else None,
    )


def _select_detection_type(
    status_code: Optional[int],
    families: set,
    too_many_redirects: bool,
    is_blocked: bool,
) -> DetectionType:
    if not is_blocked:
        return DetectionType.NONE
    if status_code == STATUS_RATE_LIMITED:
        return DetectionType.RATE_LIMIT
    if status_code == STATUS_FORBIDDEN and not families:
        return DetectionType.IP_BLOCK
    for family, detection_type in PHRASE_DETECTION_ORDER:
        if family in families:
            return detection_type
    if too_many_redirects:
        return DetectionType.REDIRECT_LOOP
    return DetectionType.PLATFORM_SPECIFIC
