"""
Application Executor.

Applies a catalog solution: validates parameters, performs the remediation
(a registered handler, or the simulated latency alone) and records the
result in the config store only when it succeeds.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import ValidationError

from shelfwatch.config import EngineThresholds, default_thresholds
from shelfwatch.exceptions import ApplicationFailure, ConfigurationError
from shelfwatch.intelligence.catalog import SolutionCatalog, SolutionDefinition
from shelfwatch.intelligence.config_store import SolutionConfigStore
from shelfwatch.intelligence.parameters import validate_parameters
from shelfwatch.models import SolutionApplicationResult, now_ms

logger = logging.getLogger(__name__)

# Called with the merged parameters; may be sync or async.
RemediationHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class SolutionExecutor:
    """Runs remediations against the shared config store."""

    def __init__(
        self,
        catalog: SolutionCatalog,
        config_store: SolutionConfigStore,
        thresholds: Optional[EngineThresholds] = None,
        handlers: Optional[Dict[str, RemediationHandler]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.catalog = catalog
        self.config_store = config_store
        self.thresholds = thresholds or default_thresholds
        self.handlers: Dict[str, RemediationHandler] = dict(handlers or {})
        self._sleep = sleep or asyncio.sleep

    def register_handler(self, solution_id: str, handler: RemediationHandler) -> None:
        self.handlers[solution_id] = handler

    def _check_preconditions(self, solution_id: str, parameters: Any) -> SolutionDefinition:
        if parameters is not None and not isinstance(parameters, dict):
            raise ConfigurationError("Parameters must be a mapping", solution_id)
        solution = self.catalog.get(solution_id)
        if solution is None or solution_id not in self.config_store:
            raise ConfigurationError("Solution not found", solution_id)
        if not self.config_store.is_enabled(solution_id):
            raise ConfigurationError("Solution is disabled", solution_id)
        return solution

    async def apply(
        self,
        solution_id: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> SolutionApplicationResult:
        """Apply a solution.

        Args:
            solution_id: Catalog id
            parameters: Overrides shallow-merged over the stored parameters

        Returns:
            SolutionApplicationResult; never raises for unknown or disabled
            solutions, malformed overrides or remediation failures.
            Cancellation propagates and leaves the config untouched.
        """
        try:
            solution = self._check_preconditions(solution_id, parameters)
        except ConfigurationError as e:
            return self._not_applied(solution_id, e, parameters)

        overrides = dict(parameters or {})

        try:
            current = self.config_store.get(solution_id)
            await self._execute(solution, {**current.parameters, **overrides})
            applied_at = now_ms()
            applied = self._commit(solution_id, overrides, applied_at)
        except ConfigurationError as e:
            return self._not_applied(solution_id, e, overrides)
        except ApplicationFailure as e:
            logger.warning(f"Failed to apply {solution.name}: {e.message}")
            return SolutionApplicationResult(
                solution_id=solution_id,
                success=False,
                message=f"Failed to apply {solution.name}: {e.message}",
                parameters=overrides,
                error=e.message,
            )

        logger.info(f"{solution.name} applied successfully")

        return SolutionApplicationResult(
            solution_id=solution_id,
            success=True,
            message=f"{solution.name} applied successfully",
            applied_at=applied_at,
            parameters=applied,
            rollback_available=not solution.requires_restart,
        )

    def _not_applied(self, solution_id: str, error: ConfigurationError, parameters: Any) -> SolutionApplicationResult:
        logger.info(f"Not applying '{solution_id}': {error.message}")
        return SolutionApplicationResult(
            solution_id=solution_id,
            success=False,
            message=error.message,
            parameters=dict(parameters) if isinstance(parameters, dict) else {},
        )

    def _commit(self, solution_id: str, overrides: Dict[str, Any], applied_at: int) -> Dict[str, Any]:
        # Config may have changed while the remediation ran; the store re-checks under its lock.
        try:
            return self.config_store.commit_applied(solution_id, overrides, applied_at)
        except ValidationError as e:
            raise ApplicationFailure(f"invalid parameters: {e}", solution_id) from e

    async def _execute(self, solution: SolutionDefinition, parameters: Dict[str, Any]) -> None:
        try:
            validated = validate_parameters(solution.id, parameters)
        except ValidationError as e:
            raise ApplicationFailure(f"invalid parameters: {e}", solution.id) from e

        latency = self.thresholds.application_latency.get(solution.implementation_complexity, 0.0)
        if latency > 0:
            await self._sleep(latency)

        handler = self.handlers.get(solution.id)
        if handler is None:
            return

        try:
            result = handler(validated)
            if inspect.isawaitable(result):
                await result
        except ApplicationFailure:
            raise
        except Exception as e:
            raise ApplicationFailure(str(e) or e.__class__.__name__, solution.id) from e
