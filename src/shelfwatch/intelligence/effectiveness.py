"""
Effectiveness Tracker.

Accumulates real-world outcomes per (solution, detection type, platform) and
feeds them back into scoring through the solution configs.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from shelfwatch.config import EngineThresholds, default_thresholds
from shelfwatch.intelligence.config_store import SolutionConfigStore
from shelfwatch.models import DetectionType, SolutionEffectiveness, Trend, now_ms

logger = logging.getLogger(__name__)

EffectivenessKey = Tuple[str, DetectionType, str]


class EffectivenessTracker:
    """Keyed success/failure statistics with a neutral 50% prior."""

    def __init__(
        self,
        config_store: Optional[SolutionConfigStore] = None,
        thresholds: Optional[EngineThresholds] = None,
        lock: Optional[threading.RLock] = None,
    ):
        self.config_store = config_store
        self.thresholds = thresholds or default_thresholds
        if lock is None:
            lock = config_store.lock if config_store is not None else threading.RLock()
        self.lock = lock
        self._records: Dict[EffectivenessKey, SolutionEffectiveness] = {}

    def update(
        self,
        solution_id: str,
        detection_type,
        platform: str,
        success: bool,
        response_time_ms: Optional[float] = None,
    ) -> SolutionEffectiveness:
        """Record one outcome and return a snapshot of the updated record."""
        detection_type = DetectionType(detection_type)
        platform = platform.lower()
        key = (solution_id, detection_type, platform)

        with self.lock:
            record = self._records.get(key)
            if record is None:
                record = SolutionEffectiveness(
                    solution_id=solution_id,
                    detection_type=detection_type,
                    platform=platform,
                    success_rate=self.thresholds.neutral_success_rate,
                )
                self._records[key] = record

            record.total_attempts += 1
            if success:
                record.success_count += 1
            else:
                record.failure_count += 1
            record.success_rate = record.success_count / record.total_attempts * 100

            if response_time_ms is not None:
                record.average_response_time = self._average(record, float(response_time_ms))

            record.recent_trend = self._trend(record.success_rate)
            record.last_updated = now_ms()

            if self.config_store is not None:
                self.config_store.record_outcome(solution_id, success, record.success_rate)

            snapshot = record.copy()

        logger.debug(
            f"Effectiveness {solution_id}/{detection_type.value}/{platform}: "
            f"{snapshot.success_rate:.1f}% over {snapshot.total_attempts} attempts"
        )
        return snapshot

    def _average(self, record: SolutionEffectiveness, sample: float) -> float:
        record.response_time_samples += 1
        previous = record.average_response_time
        if previous is None:
            return sample
        if self.thresholds.response_time_mode == "cumulative":
            return previous + (sample - previous) / record.response_time_samples
        return (previous + sample) / 2

    def _trend(self, success_rate: float) -> Trend:
        if success_rate > self.thresholds.improving_rate:
            return Trend.IMPROVING
        if success_rate < self.thresholds.declining_rate:
            return Trend.DECLINING
        return Trend.STABLE

    def get(self, solution_id: str, detection_type, platform: str) -> Optional[SolutionEffectiveness]:
        with self.lock:
            record = self._records.get((solution_id, DetectionType(detection_type), platform.lower()))
            return record.copy() if record else None

    def all(self) -> List[SolutionEffectiveness]:
        with self.lock:
            return [record.copy() for record in self._records.values()]

    def snapshot(self) -> Dict[EffectivenessKey, SolutionEffectiveness]:
        with self.lock:
            return {key: record.copy() for key, record in self._records.items()}
