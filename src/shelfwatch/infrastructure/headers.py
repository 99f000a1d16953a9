"""
Browser-like request headers for product page fetches.
"""
import random
from typing import Dict, Optional

from shelfwatch.config import settings
from shelfwatch.constants import PLATFORM_REFERERS

# User agent pool for rotation
USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    # Chrome on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/121.0",
    # Safari on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

ACCEPT_LANGUAGES = [
    "en-US,en;q=0.9",
    "en-US,en;q=0.8",
    "en-GB,en;q=0.9,en-US;q=0.8",
    "en-US,en;q=0.9,es;q=0.7",
]


def get_random_user_agent(rng: Optional[random.Random] = None) -> str:
    """Get a random user agent from the pool."""
    return (rng or random).choice(USER_AGENTS)


def build_browser_headers(
    platform: str,
    user_agent: Optional[str] = None,
    rotate_accept_language: bool = False,
    rng: Optional[random.Random] = None,
) -> Dict[str, str]:
    """Headers a desktop browser would send when opening a product page.

    Args:
        platform: Target site id; selects the Referer
        user_agent: Fixed user agent; defaults to USER_AGENT or a random pick
        rotate_accept_language: Vary Accept-Language between calls
        rng: Random source, for reproducible headers in tests

    Returns:
        Header mapping for the request
    """
    rng = rng or random
    headers = {
        "User-Agent": user_agent or settings.USER_AGENT or get_random_user_agent(rng),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
        "Accept-Language": rng.choice(ACCEPT_LANGUAGES) if rotate_accept_language else ACCEPT_LANGUAGES[0],
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "max-age=0",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }

    referer = PLATFORM_REFERERS.get(platform.lower())
    if referer:
        headers["Referer"] = referer

    return headers