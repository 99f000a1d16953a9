# src/shelfwatch/constants.py
"""Centralized constants for shelfwatch.

This module contains fixed vocabularies and default values that are used
across multiple modules. For user-configurable values, see config.py,
EngineThresholds and RetryConfig.
"""

# =============================================================================
# Platforms
# =============================================================================

PLATFORM_AMAZON = "amazon"
PLATFORM_WALMART = "walmart"

# Catalog wildcard meaning "compatible with every platform"
PLATFORM_BOTH = "both"

KNOWN_PLATFORMS = (PLATFORM_AMAZON, PLATFORM_WALMART)

PLATFORM_REFERERS = {
    PLATFORM_AMAZON: "https://www.amazon.com/",
    PLATFORM_WALMART: "https://www.walmart.com/",
}


# =============================================================================
# Detection Classifier Constants
# =============================================================================

# Status codes that are treated as a block on their own
BLOCKING_STATUS_CODES = frozenset({403, 429, 503})

STATUS_RATE_LIMITED = 429
STATUS_FORBIDDEN = 403

# Signal weights combined with a noisy-OR into the verdict confidence.
STATUS_SIGNAL_WEIGHTS = {
    429: 0.85,
    403: 0.6,
    503: 0.5,
}
REDIRECT_SIGNAL_WEIGHT = 0.6

# Challenge phrases, matched case-insensitively against the response body.
# Grouped by the detection type they point at.
CAPTCHA_PHRASES = (
    "captcha",
    "robot check",
    "robot or human?",
    "please confirm that you are a human",
    "enter the characters you see below",
    "verify you are human",
)

CLOUDFLARE_PHRASES = (
    "attention required! | cloudflare",
    "checking your browser before accessing",
    "cf-browser-verification",
    "performance & security by cloudflare",
    "ray id:",
)

AWS_WAF_PHRASES = (
    "request blocked by aws waf",
    "this request was blocked by the security rules",
    "awswaf",
)

JS_CHALLENGE_PHRASES = (
    "enable javascript and cookies to continue",
    "please turn javascript on and reload the page",
    "press & hold",
    "javascript is disabled",
)

GENERIC_BLOCK_PHRASES = (
    "to discuss automated access",
    "automated queries",
    "unusual traffic",
    "access denied",
    "security check",
    "something went wrong",
    "blocked",
)

PHRASE_SIGNAL_WEIGHTS = {
    "captcha": 0.7,
    "cloudflare": 0.7,
    "aws_waf": 0.7,
    "js_challenge": 0.5,
    "generic": 0.35,
}

# Response headers that only appear on challenge/block responses
CHALLENGE_HEADERS = {
    "cf-mitigated": "cloudflare",
    "x-amzn-waf-action": "aws_waf",
}
HEADER_SIGNAL_WEIGHT = 0.7

# Characters of the body kept in detection details / log samples
BODY_SAMPLE_CHARS = 500


# =============================================================================
# Retry / Backoff Constants
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3

# Base for exponential backoff calculation
EXPONENTIAL_BACKOFF_BASE = 2

# Seconds; per-platform base delay for blocked attempts
DEFAULT_BASE_DELAY_SECONDS = 2.0
PLATFORM_BASE_DELAY_SECONDS = {
    PLATFORM_AMAZON: 2.0,
    PLATFORM_WALMART: 3.0,
}

MAX_JITTER_SECONDS = 2.0
MAX_BACKOFF_DELAY_SECONDS = 300.0

# Fixed delay before retrying a network-level failure
NETWORK_RETRY_DELAY_SECONDS = 1.0

# Bounded timeout for a single fetch attempt
DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 30.0

MAX_REDIRECTS = 5


# =============================================================================
# Detection Logger Constants
# =============================================================================

# Response times kept per platform for the rolling mean
REQUEST_TIMES_WINDOW = 100
