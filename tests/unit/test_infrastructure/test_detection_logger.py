"""Unit tests for detection event logging and request statistics."""

import logging
from unittest.mock import MagicMock

import pytest

from shelfwatch.infrastructure.detection_logger import DetectionEventLogger, format_detection_event
from shelfwatch.models import DetectionResult, DetectionType

URL = "https://www.amazon.com/dp/B000TEST"


def blocked_detection(raw_response=None):
    return DetectionResult(
        is_blocked=True,
        detection_type=DetectionType.CAPTCHA,
        confidence=0.88,
        platform="amazon",
        response_code=200,
        response_time=340.0,
        suggested_action="Solve the CAPTCHA manually",
        details={"signals": ["phrase:captcha"], "redirect_count": 0},
        raw_response=raw_response,
    )


@pytest.fixture
def event_logger():
    return DetectionEventLogger()


class TestFormatDetectionEvent:
    """Tests for format_detection_event."""

    def test_event_block(self):
        text = format_detection_event(blocked_detection(), URL, {"User-Agent": "agent/1.0", "DNT": "1"})

        assert "ANTI-BOT DETECTION EVENT" in text
        assert "Platform: AMAZON" in text
        assert "Detection Type: CAPTCHA" in text
        assert "Confidence Level: 88.0%" in text
        assert f"URL: {URL}" in text
        assert "User Agent: agent/1.0" in text
        assert "  DNT: 1" in text
        assert "  signals: [phrase:captcha]" in text

    def test_response_sample(self):
        text = format_detection_event(blocked_detection(raw_response="Robot Check"), URL)

        assert "RESPONSE SAMPLE" in text
        assert "Robot Check" in text

    def test_without_headers(self):
        text = format_detection_event(blocked_detection(), URL)
        assert "User Agent" not in text


class TestLogEvent:
    """Tests for DetectionEventLogger.log_event."""

    def test_blocked_detection_is_logged(self, event_logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="shelfwatch.detections"):
            event_logger.log_event(blocked_detection(), "amazon", URL)

        records = [r for r in caplog.records if r.name == "shelfwatch.detections"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert "ANTI-BOT DETECTION EVENT" in records[0].getMessage()

    def test_clean_response_is_debug(self, event_logger, caplog):
        clean = DetectionResult(
            is_blocked=False,
            detection_type=DetectionType.NONE,
            confidence=0.0,
            platform="amazon",
            response_code=200,
        )
        with caplog.at_level(logging.DEBUG, logger="shelfwatch.detections"):
            event_logger.log_event(clean, "amazon", URL)

        assert all(r.levelno == logging.DEBUG for r in caplog.records if r.name == "shelfwatch.detections")

    def test_logging_failure_is_swallowed(self):
        log = MagicMock()
        log.warning.side_effect = RuntimeError("disk full")

        DetectionEventLogger(log=log).log_event(blocked_detection(), "amazon", URL)

        log.warning.assert_called_once()


class TestRequestStats:
    """Tests for per-platform request statistics."""

    def test_counts(self, event_logger):
        event_logger.log_request("amazon", True, 200.0, 200)
        event_logger.log_request("amazon", False, 100.0, 403)
        event_logger.log_request("amazon", False, 300.0, 429)
        event_logger.log_request("amazon", False, 0.0, None)

        stats = event_logger.get_request_stats()["amazon"]

        assert stats["total_requests"] == 4
        assert stats["success_count"] == 1
        assert stats["failure_count"] == 3
        assert stats["block_count"] == 2
        assert stats["avg_response_time"] == 150.0

    def test_platforms_are_separate(self, event_logger):
        event_logger.log_request("amazon", True, 100.0, 200)
        event_logger.log_request("walmart", False, 100.0, 503)

        stats = event_logger.get_request_stats()

        assert stats["amazon"]["success_count"] == 1
        assert stats["walmart"]["block_count"] == 0

    def test_rolling_window(self, event_logger):
        """Test that the average covers only the last 100 requests."""
        for _ in range(50):
            event_logger.log_request("amazon", True, 1000.0, 200)
        for _ in range(100):
            event_logger.log_request("amazon", True, 200.0, 200)

        stats = event_logger.get_request_stats()["amazon"]

        assert stats["total_requests"] == 150
        assert len(stats["request_times"]) == 100
        assert stats["avg_response_time"] == 200.0

    def test_stats_survive_logging_failure(self):
        log = MagicMock()
        log.info.side_effect = RuntimeError("disk full")
        event_logger = DetectionEventLogger(log=log)

        event_logger.log_request("amazon", True, 100.0, 200)

        assert event_logger.get_request_stats()["amazon"]["total_requests"] == 1


class TestReport:
    """Tests for the plain-text report."""

    def test_empty_report(self, event_logger):
        assert "No requests made in current session." in event_logger.report()

    def test_report_lists_platforms(self, event_logger):
        event_logger.log_request("amazon", True, 200.0, 200)
        event_logger.log_request("amazon", False, 400.0, 429)

        report = event_logger.report()

        assert "AMAZON:" in report
        assert "Total Requests: 2" in report
        assert "Success Rate: 50.0%" in report
        assert "Block Rate: 50.0%" in report
        assert "Recent Response Times: [200ms, 400ms]" in report
