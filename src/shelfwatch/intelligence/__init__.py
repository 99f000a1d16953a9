"""
Remediation Intelligence Package.

Provides the solution catalog, per-solution configuration and
effectiveness state, and the engine that ranks and applies remediations:
- Solution catalog loaded from YAML and validated at startup
- Config store with optional JSON persistence
- Effectiveness tracking that feeds back into scoring
- Suggestion engine and application executor
"""

from .catalog import SolutionCatalog, SolutionDefinition, load_catalog
from .parameters import PARAMETER_MODELS, SolutionParameters, validate_parameters
from .config_store import JsonConfigPersistence, SolutionConfigStore, default_config_for
from .effectiveness import EffectivenessTracker
from .executor import SolutionExecutor
from .suggestion_engine import (
    MonitorSettings,
    SolutionEngine,
    SuggestionEngine,
    calculate_relevance_score,
    determine_urgency,
)

__all__ = [
    # Catalog
    "SolutionCatalog",
    "SolutionDefinition",
    "load_catalog",
    # Parameters
    "PARAMETER_MODELS",
    "SolutionParameters",
    "validate_parameters",
    # State
    "JsonConfigPersistence",
    "SolutionConfigStore",
    "default_config_for",
    "EffectivenessTracker",
    # Engine
    "SolutionExecutor",
    "MonitorSettings",
    "SolutionEngine",
    "SuggestionEngine",
    "calculate_relevance_score",
    "determine_urgency",
]
