"""
Solution Configuration Store.

Holds one mutable SolutionConfig per catalog entry, seeded from catalog
defaults and optionally from overrides persisted in a JSON file.

Usage:
    persistence = JsonConfigPersistence("~/.shelfwatch/solution_configs.json")
    store = SolutionConfigStore(catalog, persistence=persistence)
    store.update("increase_delays", {"enabled": False})
"""

import json
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional

from shelfwatch.exceptions import ConfigurationError
from shelfwatch.intelligence.catalog import SolutionCatalog, SolutionDefinition
from shelfwatch.intelligence.parameters import validate_parameters
from shelfwatch.models import SolutionConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "solution_configs.json"

BOOLEAN_FIELDS = ("enabled", "auto_apply")


def default_config_for(solution: SolutionDefinition) -> SolutionConfig:
    """Catalog-derived starting config for a solution."""
    return SolutionConfig(
        enabled=True,
        auto_apply=solution.can_auto_apply and not solution.requires_user_interaction,
        parameters=dict(solution.default_parameters),
        effectiveness=solution.estimated_effectiveness,
    )


class JsonConfigPersistence:
    """
    Loads and saves solution config overrides as a JSON document.

    Saves run on a single background worker so callers never wait on disk
    I/O; later saves supersede earlier ones.
    """

    def __init__(self, path):
        self.path = Path(path).expanduser()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="shelfwatch-persist")
        self._pending: Optional[Future] = None

    @classmethod
    def in_directory(cls, state_dir) -> "JsonConfigPersistence":
        return cls(Path(state_dir).expanduser() / CONFIG_FILENAME)

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Read overrides keyed by solution id. Missing or unreadable files yield {}."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load solution configs from {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring solution config file {self.path}: expected an object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def save(self, configs: Dict[str, Dict[str, Any]]) -> Future:
        """Schedule a write of the full config map."""
        self._pending = self._executor.submit(self._write, configs)
        return self._pending

    def _write(self, configs: Dict[str, Dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(configs, f, indent=2)
            os.replace(tmp_path, self.path)
            logger.debug(f"Saved {len(configs)} solution configs to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save solution configs to {self.path}: {e}")

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for the most recent save to finish."""
        if self._pending is not None:
            self._pending.result(timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


class SolutionConfigStore:
    """
    Mutable per-solution settings.

    All reads and writes go through ``lock``; the engine shares one lock
    between this store and the effectiveness tracker so a suggestion pass
    sees both in a single consistent state.
    """

    def __init__(
        self,
        catalog: SolutionCatalog,
        lock: Optional[threading.RLock] = None,
        persistence: Optional[JsonConfigPersistence] = None,
    ):
        self.catalog = catalog
        self.lock = lock or threading.RLock()
        self.persistence = persistence
        self._configs: Dict[str, SolutionConfig] = {
            solution.id: default_config_for(solution) for solution in catalog
        }

        if persistence is not None:
            overrides = persistence.load()
            for solution_id, partial in overrides.items():
                self._apply_partial(solution_id, partial)
            if overrides:
                logger.info(f"Loaded config overrides for {len(overrides)} solutions")

    def __contains__(self, solution_id: str) -> bool:
        return solution_id in self._configs

    def get(self, solution_id: str) -> Optional[SolutionConfig]:
        """Snapshot of a solution's config, or None for unknown ids."""
        with self.lock:
            config = self._configs.get(solution_id)
            return config.copy() if config else None

    def is_enabled(self, solution_id: str) -> bool:
        with self.lock:
            config = self._configs.get(solution_id)
            return bool(config and config.enabled)

    def snapshot(self) -> Dict[str, SolutionConfig]:
        with self.lock:
            return {sid: config.copy() for sid, config in self._configs.items()}

    def update(self, solution_id: str, partial: Dict[str, Any]) -> bool:
        """Overlay fields from partial onto a solution's config.

        Unknown ids and unknown fields are logged and ignored.

        Returns:
            True if the config existed and was updated
        """
        with self.lock:
            updated = self._apply_partial(solution_id, partial)
        if updated:
            self.persist()
        return updated

    def update_many(self, partials: Dict[str, Dict[str, Any]]) -> int:
        """Apply several partial updates atomically and persist once."""
        with self.lock:
            count = sum(1 for sid, partial in partials.items() if self._apply_partial(sid, partial))
        if count:
            self.persist()
        return count

    def _apply_partial(self, solution_id: str, partial: Dict[str, Any]) -> bool:
        config = self._configs.get(solution_id)
        if config is None:
            logger.warning(f"Ignoring config update for unknown solution '{solution_id}'")
            return False
        if not isinstance(partial, dict):
            logger.warning(f"Ignoring non-mapping config update for '{solution_id}'")
            return False

        known = set(SolutionConfig.field_names())
        for key, value in partial.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config field '{key}' for '{solution_id}'")
                continue
            if key == "parameters" and not isinstance(value, dict):
                logger.warning(f"Ignoring non-mapping parameters for '{solution_id}'")
                continue
            if key in BOOLEAN_FIELDS and not isinstance(value, bool):
                logger.warning(f"Ignoring non-boolean '{key}' for '{solution_id}': {value!r}")
                continue
            setattr(config, key, dict(value) if key == "parameters" else value)
        return True

    def record_outcome(self, solution_id: str, success: bool, success_rate: float) -> None:
        """Mirror a tracked outcome into the solution's config."""
        with self.lock:
            config = self._configs.get(solution_id)
            if config is None:
                return
            config.effectiveness = success_rate
            if success:
                config.success_count += 1
            else:
                config.failure_count += 1

    def commit_applied(self, solution_id: str, overrides: Dict[str, Any], applied_at: int) -> Dict[str, Any]:
        """Record a finished application against the config as it is now.

        Overrides are merged over the currently stored parameters, so updates
        made while the remediation ran are kept.

        Returns:
            The stored parameter map

        Raises:
            ConfigurationError: if the solution is unknown or was disabled
            pydantic.ValidationError: if the merged parameters are invalid
        """
        with self.lock:
            config = self._configs.get(solution_id)
            if config is None:
                raise ConfigurationError("Solution not found", solution_id)
            if not config.enabled:
                raise ConfigurationError("Solution is disabled", solution_id)

            merged = {**config.parameters, **overrides}
            validate_parameters(solution_id, merged)
            config.parameters = merged
            config.last_applied = applied_at
            stored = dict(merged)
        self.persist()
        return stored

    def persist(self) -> None:
        """Hand the current config map to the persistence backend, if any."""
        if self.persistence is None:
            return
        with self.lock:
            payload = {sid: config.to_dict() for sid, config in self._configs.items()}
        self.persistence.save(payload)
