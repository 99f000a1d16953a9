"""
Detection event logging and per-platform request statistics.

Blocked detections are written as readable multi-line blocks to the
``shelfwatch.detections`` logger so they can be routed to their own file.
Everything here is advisory: a failure while logging never reaches the
caller.
"""
import logging
import platform as host_platform
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Mapping, Optional

from shelfwatch.constants import (
    BODY_SAMPLE_CHARS,
    REQUEST_TIMES_WINDOW,
    STATUS_FORBIDDEN,
    STATUS_RATE_LIMITED,
)
from shelfwatch.models import DetectionResult, now_ms

logger = logging.getLogger(__name__)
detection_log = logging.getLogger("shelfwatch.detections")

RULE = "=" * 80


@dataclass
class RequestStats:
    """Rolling request counters for one platform."""

    platform: str
    success_count: int = 0
    failure_count: int = 0
    block_count: int = 0
    total_requests: int = 0
    avg_response_time: float = 0.0
    last_request: int = 0
    request_times: Deque[float] = field(default_factory=lambda: deque(maxlen=REQUEST_TIMES_WINDOW))

    def rate(self, count: int) -> float:
        return count / self.total_requests * 100 if self.total_requests else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "block_count": self.block_count,
            "total_requests": self.total_requests,
            "avg_response_time": self.avg_response_time,
            "last_request": self.last_request,
            "request_times": list(self.request_times),
        }


def format_detection_event(
    detection: DetectionResult,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
) -> str:
    """Render a detection as a human-readable block."""
    lines = [
        RULE,
        "ANTI-BOT DETECTION EVENT",
        f"Time: {datetime.fromtimestamp(detection.timestamp / 1000).strftime('%Y-%m-%d %H:%M:%S')}",
        f"Platform: {detection.platform.upper()}",
        f"Detection Type: {detection.detection_type.value.upper()}",
        f"Confidence Level: {detection.confidence * 100:.1f}%",
        f"Response Code: {detection.response_code}",
        f"Response Time: {detection.response_time:.0f}ms",
        "",
        "REQUEST DETAILS:",
        f"URL: {url}",
    ]

    if headers:
        lines.append(f"User Agent: {headers.get('User-Agent', 'unknown')}")
        lines.append("Headers Used:")
        for key, value in headers.items():
            if key != "User-Agent":
                lines.append(f"  {key}: {value}")

    lines += ["", "SUGGESTED ACTION:", detection.suggested_action, ""]

    if detection.details:
        lines.append("TECHNICAL DETAILS:")
        for key, value in detection.details.items():
            if isinstance(value, (list, tuple)):
                lines.append(f"  {key}: [{', '.join(str(v) for v in value)}]")
            else:
                lines.append(f"  {key}: {value}")
        lines.append("")

    if detection.raw_response:
        sample = detection.raw_response[:BODY_SAMPLE_CHARS]
        ellipsis = "..." if len(detection.raw_response) > BODY_SAMPLE_CHARS else ""
        lines += [f"RESPONSE SAMPLE (First {BODY_SAMPLE_CHARS} chars):", sample + ellipsis, ""]

    lines.append(RULE)
    return "\n".join(lines)


class DetectionEventLogger:
    """
    Logging collaborator for the retry controller.

    Usage:
        event_logger = DetectionEventLogger()
        event_logger.log_event(detection, "amazon", url)
        print(event_logger.report())
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or detection_log
        self._stats: Dict[str, RequestStats] = {}
        self._lock = threading.Lock()

    def log_event(
        self,
        detection: DetectionResult,
        platform: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Record one classified attempt; blocked ones get a full event block."""
        try:
            if detection.is_blocked:
                self.log.warning("\n" + format_detection_event(detection, url, headers))
            else:
                self.log.debug(f"Clean response from {platform} ({detection.response_code}) for {url}")
        except Exception as e:
            logger.debug(f"Failed to log detection event for {url}: {e}")

    def log_request(
        self,
        platform: str,
        success: bool,
        response_time_ms: float,
        status_code: Optional[int] = None,
    ) -> None:
        """Update the platform's request counters."""
        try:
            with self._lock:
                stats = self._stats.get(platform)
                if stats is None:
                    stats = RequestStats(platform=platform)
                    self._stats[platform] = stats

                stats.total_requests += 1
                stats.last_request = now_ms()
                stats.request_times.append(float(response_time_ms))
                stats.avg_response_time = sum(stats.request_times) / len(stats.request_times)

                if success:
                    stats.success_count += 1
                else:
                    stats.failure_count += 1
                    if status_code in (STATUS_FORBIDDEN, STATUS_RATE_LIMITED):
                        stats.block_count += 1

            self.log.info(
                f"REQUEST: {platform.upper()} | Status: {'SUCCESS' if success else 'FAILED'} | "
                f"Code: {status_code} | Time: {response_time_ms:.0f}ms"
            )
        except Exception as e:
            logger.debug(f"Failed to record request stats for {platform}: {e}")

    def get_request_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {platform: stats.to_dict() for platform, stats in self._stats.items()}

    def report(self) -> str:
        """Plain-text summary of this session's request statistics."""
        with self._lock:
            stats = list(self._stats.values())

        lines = [
            "SHELFWATCH - ANTI-BOT DETECTION REPORT",
            f"Generated: {datetime.now().isoformat()}",
            f"System: {host_platform.system()} {host_platform.machine()}",
            f"Python Version: {host_platform.python_version()}",
            "=" * 60,
            "",
            "CURRENT SESSION STATISTICS:",
        ]

        if not stats:
            lines.append("No requests made in current session.")
        for entry in stats:
            lines += [
                "",
                f"{entry.platform.upper()}:",
                f"  Total Requests: {entry.total_requests}",
                f"  Success Rate: {entry.rate(entry.success_count):.1f}%",
                f"  Block Rate: {entry.rate(entry.block_count):.1f}%",
                f"  Avg Response Time: {entry.avg_response_time:.0f}ms",
            ]
            recent = list(entry.request_times)[-10:]
            if recent:
                lines.append(f"  Recent Response Times: [{', '.join(f'{t:.0f}ms' for t in recent)}]")

        lines += ["", "=" * 60]
        return "\n".join(lines)
