"""
Retry/Backoff Controller.

Drives repeated fetch-and-classify attempts for one monitored target:

    ATTEMPTING -> CLASSIFYING -> (BACKOFF -> ATTEMPTING) | SUCCEEDED | EXHAUSTED

Blocked attempts back off exponentially with jitter. Network failures and
per-attempt timeouts are retried after a short fixed delay and count against
the same attempt budget. cancel() stops the sequence before the next attempt
starts; an in-flight fetch is never interrupted.

Usage:
    async with HttpFetcher() as fetcher:
        controller = RetryController("amazon", fetcher, engine=engine)
        outcome = await controller.run(url)
        if not outcome.succeeded:
            print(outcome.detection.detection_type, len(outcome.suggestions))
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from shelfwatch.config import EngineThresholds, RetryConfig, default_thresholds
from shelfwatch.constants import EXPONENTIAL_BACKOFF_BASE
from shelfwatch.exceptions import NetworkError
from shelfwatch.infrastructure.detection_logger import DetectionEventLogger
from shelfwatch.infrastructure.headers import build_browser_headers
from shelfwatch.infrastructure.http_fetcher import FetchResponse
from shelfwatch.models import DetectionResult, GroupedSuggestions
from shelfwatch.utils.challenge_detector import classify_response

if TYPE_CHECKING:
    from shelfwatch.intelligence.suggestion_engine import SolutionEngine

logger = logging.getLogger(__name__)


class FetchState(str, Enum):
    ATTEMPTING = "attempting"
    CLASSIFYING = "classifying"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class FetchOutcome:
    """Final result of a controller run."""

    url: str
    platform: str
    state: FetchState
    detection: Optional[DetectionResult] = None
    payload: Any = None
    attempts: int = 0
    classifications: List[DetectionResult] = field(default_factory=list)
    backoff_delays: List[float] = field(default_factory=list)
    network_errors: List[str] = field(default_factory=list)
    last_error: Optional[NetworkError] = None
    suggestions: Optional[GroupedSuggestions] = None

    @property
    def succeeded(self) -> bool:
        return self.state == FetchState.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "platform": self.platform,
            "state": self.state.value,
            "detection": self.detection.to_dict() if self.detection else None,
            "attempts": self.attempts,
            "backoff_delays": self.backoff_delays,
            "network_errors": self.network_errors,
            "last_error": self.last_error.message if self.last_error else None,
            "suggestions": self.suggestions.to_dict() if self.suggestions else None,
        }


Fetcher = Any  # anything with: async issue(url, headers) -> FetchResponse


def effective_retry_config(engine: "SolutionEngine", config: Optional[RetryConfig] = None) -> RetryConfig:
    """Retry policy with an applied exponential_backoff remediation folded in."""
    config = config or RetryConfig.from_env()
    backoff = engine.get_solution_config("exponential_backoff")
    if backoff is None or not backoff.enabled or backoff.last_applied is None:
        return config
    return config.with_backoff_parameters(backoff.parameters)


class RetryController:
    """Bounded retry state machine for a single monitored target."""

    def __init__(
        self,
        platform: str,
        fetcher: Fetcher,
        config: Optional[RetryConfig] = None,
        thresholds: Optional[EngineThresholds] = None,
        event_logger: Optional[DetectionEventLogger] = None,
        engine: Optional["SolutionEngine"] = None,
        is_desktop: bool = False,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
        header_factory: Optional[Callable[[], Dict[str, str]]] = None,
        extract: Optional[Callable[[FetchResponse], Any]] = None,
    ):
        self.platform = platform
        self.fetcher = fetcher
        self.config = config or RetryConfig()
        self.thresholds = thresholds or default_thresholds
        self.event_logger = event_logger or DetectionEventLogger()
        self.engine = engine
        self.is_desktop = is_desktop
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._header_factory = header_factory or (lambda: build_browser_headers(platform))
        self._extract = extract or (lambda response: response.body)
        self._cancelled = asyncio.Event()
        self.state = FetchState.ATTEMPTING

    # =========================================================================
    # Backoff
    # =========================================================================

    def compute_backoff_delay(self, attempt: int) -> float:
        """Delay after a blocked attempt.

        Args:
            attempt: Number of the attempt that was blocked (1-based)

        Returns:
            base * 2^attempt + U(0, max_jitter), capped at max_delay (seconds)
        """
        base = self.config.base_delay_for(self.platform)
        delay = base * (EXPONENTIAL_BACKOFF_BASE ** attempt)
        delay += self._rng.uniform(0, self.config.max_jitter)
        return min(delay, self.config.max_delay)

    def cancel(self) -> None:
        """Stop before the next attempt and cut any backoff wait short."""
        logger.info(f"Cancelling fetch sequence for {self.platform}")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def _wait(self, delay: float) -> bool:
        """Suspend for delay seconds. Returns False if cancelled meanwhile."""
        if self.cancelled:
            return False
        if delay <= 0:
            return True
        if self._sleep is not None:
            await self._sleep(delay)
            return not self.cancelled
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
            return False
        except asyncio.TimeoutError:
            return True

    # =========================================================================
    # Run
    # =========================================================================

    async def _attempt(self, url: str, headers: Dict[str, str]) -> FetchResponse:
        try:
            return await asyncio.wait_for(
                self.fetcher.issue(url, headers), timeout=self.config.attempt_timeout
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Attempt timed out after {self.config.attempt_timeout}s: {url}", url=url, timeout=True
            ) from e

    async def run(self, url: str) -> FetchOutcome:
        """Fetch url until a clean response, exhaustion or cancellation.

        NetworkError never escapes; after exhaustion the last one is kept
        in FetchOutcome.last_error.
        """
        outcome = FetchOutcome(url=url, platform=self.platform, state=FetchState.ATTEMPTING)
        max_attempts = max(1, self.config.max_attempts)

        while outcome.attempts < max_attempts:
            if self.cancelled:
                return self._finish(outcome, FetchState.CANCELLED)

            outcome.attempts += 1
            attempt = outcome.attempts
            self.state = FetchState.ATTEMPTING
            headers = self._header_factory()

            try:
                response = await self._attempt(url, headers)
            except NetworkError as e:
                outcome.network_errors.append(e.message)
                outcome.last_error = e
                self.event_logger.log_request(self.platform, False, 0.0, None)
                logger.warning(f"Attempt {attempt}/{max_attempts} failed for {url}: {e.message}")
                if attempt < max_attempts and not await self._wait(self.config.network_retry_delay):
                    return self._finish(outcome, FetchState.CANCELLED)
                continue

            self.state = FetchState.CLASSIFYING
            detection = classify_response(
                response.body,
                response.status_code,
                elapsed_ms=response.elapsed_ms,
                platform=self.platform,
                redirect_count=response.redirect_count,
                headers=response.headers,
                thresholds=self.thresholds,
            )
            outcome.classifications.append(detection)
            outcome.detection = detection
            self.event_logger.log_event(detection, self.platform, url, headers)
            self.event_logger.log_request(
                self.platform, not detection.is_blocked, response.elapsed_ms, response.status_code
            )

            if not detection.is_blocked:
                outcome.payload = self._extract(response)
                logger.info(f"Fetched {url} on attempt {attempt}/{max_attempts}")
                return self._finish(outcome, FetchState.SUCCEEDED)

            logger.warning(
                f"Attempt {attempt}/{max_attempts} blocked on {self.platform}: "
                f"{detection.detection_type.value} ({detection.confidence:.2f})"
            )

            if attempt < max_attempts:
                delay = self.compute_backoff_delay(attempt)
                outcome.backoff_delays.append(delay)
                self.state = FetchState.BACKOFF
                logger.info(f"Backing off {delay:.1f}s before retrying {url}")
                if not await self._wait(delay):
                    return self._finish(outcome, FetchState.CANCELLED)

        return self._finish(outcome, FetchState.EXHAUSTED)

    def _finish(self, outcome: FetchOutcome, state: FetchState) -> FetchOutcome:
        self.state = state
        outcome.state = state

        if state == FetchState.EXHAUSTED:
            logger.error(f"Giving up on {outcome.url} after {outcome.attempts} attempts")

        if self.engine is not None and outcome.detection is not None and outcome.detection.is_blocked:
            outcome.suggestions = self.engine.generate_suggestions(
                outcome.detection, is_desktop=self.is_desktop
            )
        return outcome
