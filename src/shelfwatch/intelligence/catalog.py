"""
Solution Catalog

Static registry of remediation definitions loaded from YAML and validated
once at startup. Provides lookup by id, by category and by detection type,
plus the platform and environment filters the suggestion engine needs.

Usage:
    catalog = load_catalog()
    for solution in catalog.for_detection(DetectionType.RATE_LIMIT):
        print(solution.id, solution.estimated_effectiveness)
"""

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from shelfwatch.constants import PLATFORM_BOTH
from shelfwatch.exceptions import CatalogValidationError
from shelfwatch.models import DetectionType

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "solutions.yaml"

Priority = Literal["low", "medium", "high", "critical"]
RiskLevel = Literal["low", "medium", "high"]
Complexity = Literal["simple", "moderate", "complex"]
Category = Literal[
    "user_agent_rotation",
    "request_delays",
    "header_randomization",
    "ip_proxy_rotation",
    "request_pattern_modification",
    "platform_specific_workarounds",
]


class SolutionDefinition(BaseModel):
    """Immutable description of one remediation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    category: Category
    priority: Priority
    detection_types: FrozenSet[DetectionType] = Field(min_length=1)
    requires_user_interaction: bool = False
    can_auto_apply: bool = True
    estimated_effectiveness: float = Field(ge=0, le=100)
    implementation_complexity: Complexity
    requires_restart: bool = False
    risk_level: RiskLevel
    dependencies: FrozenSet[str] = frozenset()
    conflicts: FrozenSet[str] = frozenset()
    platforms: FrozenSet[str] = Field(min_length=1)
    desktop_only: bool = False
    web_only: bool = False
    default_parameters: Dict[str, Any] = Field(default_factory=dict)
    application_steps: Tuple[str, ...] = ()

    @field_validator("platforms")
    @classmethod
    def _normalize_platforms(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        return frozenset(p.strip().lower() for p in value)

    @model_validator(mode="after")
    def _check_consistency(self) -> "SolutionDefinition":
        if self.desktop_only and self.web_only:
            raise ValueError("desktop_only and web_only are mutually exclusive")
        if self.id in self.dependencies:
            raise ValueError("solution cannot depend on itself")
        if self.id in self.conflicts:
            raise ValueError("solution cannot conflict with itself")
        overlap = self.dependencies & self.conflicts
        if overlap:
            raise ValueError(f"ids listed as both dependency and conflict: {sorted(overlap)}")
        return self

    def is_platform_compatible(self, platform: str) -> bool:
        """True if the entry supports every platform or the given one."""
        return PLATFORM_BOTH in self.platforms or platform.lower() in self.platforms

    def is_environment_compatible(self, is_desktop: bool) -> bool:
        if self.desktop_only and not is_desktop:
            return False
        if self.web_only and is_desktop:
            return False
        return True


class SolutionCatalog:
    """
    Validated, read-only set of SolutionDefinitions with derived indexes.

    The detection index is taken from the catalog file where it lists a
    detection type; types it omits are indexed from the entries' own
    detection_types, so every type has a (possibly empty) candidate list.
    """

    def __init__(
        self,
        solutions: Iterable[SolutionDefinition],
        detection_index: Optional[Dict[str, List[str]]] = None,
        platform_solutions: Optional[Dict[str, List[str]]] = None,
        symmetric_conflicts: bool = True,
    ):
        self._solutions: Dict[str, SolutionDefinition] = {}
        problems: List[str] = []

        for solution in solutions:
            if solution.id in self._solutions:
                problems.append(f"duplicate solution id '{solution.id}'")
                continue
            self._solutions[solution.id] = solution

        for solution in self._solutions.values():
            for dep in sorted(solution.dependencies):
                if dep not in self._solutions:
                    problems.append(f"'{solution.id}' depends on unknown solution '{dep}'")
            for other in sorted(solution.conflicts):
                if other not in self._solutions:
                    problems.append(f"'{solution.id}' conflicts with unknown solution '{other}'")

        self._by_detection: Dict[DetectionType, Tuple[str, ...]] = {}
        for raw_type, ids in (detection_index or {}).items():
            try:
                detection_type = DetectionType(raw_type)
            except ValueError:
                problems.append(f"detection index uses unknown detection type '{raw_type}'")
                continue
            problems.extend(self._check_ids(ids, f"detection index '{raw_type}'"))
            self._by_detection[detection_type] = tuple(dict.fromkeys(ids))

        for detection_type in DetectionType:
            if detection_type not in self._by_detection:
                self._by_detection[detection_type] = tuple(
                    s.id for s in self._solutions.values() if detection_type in s.detection_types
                )

        self._by_platform: Dict[str, Tuple[str, ...]] = {}
        for platform, ids in (platform_solutions or {}).items():
            problems.extend(self._check_ids(ids, f"platform list '{platform}'"))
            self._by_platform[platform.lower()] = tuple(dict.fromkeys(ids))

        if problems:
            raise CatalogValidationError("Invalid solution catalog", problems)

        self.symmetric_conflicts = symmetric_conflicts
        self._conflicts: Dict[str, FrozenSet[str]] = {
            sid: s.conflicts for sid, s in self._solutions.items()
        }
        if symmetric_conflicts:
            mirrored: Dict[str, set] = {sid: set(c) for sid, c in self._conflicts.items()}
            for sid, conflicts in self._conflicts.items():
                for other in conflicts:
                    mirrored[other].add(sid)
            self._conflicts = {sid: frozenset(c) for sid, c in mirrored.items()}

        logger.debug(f"Loaded catalog with {len(self._solutions)} solutions")

    def _check_ids(self, ids: Iterable[str], where: str) -> List[str]:
        return [f"{where} references unknown solution '{sid}'" for sid in ids if sid not in self._solutions]

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Dict[str, Any], symmetric_conflicts: bool = True) -> "SolutionCatalog":
        """Build a catalog from the parsed YAML document.

        Raises:
            CatalogValidationError: if any entry or index is malformed
        """
        if not isinstance(data, dict):
            raise CatalogValidationError("Catalog document must be a mapping")

        raw_solutions = data.get("solutions")
        if not isinstance(raw_solutions, list) or not raw_solutions:
            raise CatalogValidationError("Catalog must define a non-empty 'solutions' list")

        solutions: List[SolutionDefinition] = []
        problems: List[str] = []
        for position, raw in enumerate(raw_solutions):
            label = raw.get("id", f"#{position}") if isinstance(raw, dict) else f"#{position}"
            try:
                solutions.append(SolutionDefinition.model_validate(raw))
            except ValidationError as e:
                for error in e.errors():
                    loc = ".".join(str(part) for part in error["loc"]) or "entry"
                    problems.append(f"{label}: {loc}: {error['msg']}")

        if problems:
            raise CatalogValidationError("Invalid solution catalog", problems)

        return cls(
            solutions,
            detection_index=data.get("detection_index"),
            platform_solutions=data.get("platform_solutions"),
            symmetric_conflicts=symmetric_conflicts,
        )

    @classmethod
    def from_yaml(cls, path, symmetric_conflicts: bool = True) -> "SolutionCatalog":
        """Load and validate a catalog file."""
        file_path = Path(path)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogValidationError(f"Could not parse catalog {file_path}: {e}") from e
        except OSError as e:
            raise CatalogValidationError(f"Could not read catalog {file_path}: {e}") from e

        return cls.from_dict(data, symmetric_conflicts=symmetric_conflicts)

    # =========================================================================
    # Lookup
    # =========================================================================

    def __contains__(self, solution_id: str) -> bool:
        return solution_id in self._solutions

    def __iter__(self) -> Iterator[SolutionDefinition]:
        return iter(self._solutions.values())

    def __len__(self) -> int:
        return len(self._solutions)

    @property
    def ids(self) -> List[str]:
        return list(self._solutions)

    def get(self, solution_id: str) -> Optional[SolutionDefinition]:
        return self._solutions.get(solution_id)

    def by_category(self, category: str) -> List[SolutionDefinition]:
        return [s for s in self._solutions.values() if s.category == category]

    def categories(self) -> List[str]:
        return list(dict.fromkeys(s.category for s in self._solutions.values()))

    def for_detection(self, detection_type) -> List[SolutionDefinition]:
        """Candidates indexed under a detection type, in index order."""
        ids = self._by_detection.get(DetectionType(detection_type), ())
        return [self._solutions[sid] for sid in ids]

    def for_platform(self, platform: str) -> List[SolutionDefinition]:
        """Solutions always considered for a platform."""
        ids = self._by_platform.get(platform.lower(), ())
        return [self._solutions[sid] for sid in ids]

    def compatible_with(
        self,
        solutions: Iterable[SolutionDefinition],
        platform: str,
        is_desktop: bool,
    ) -> List[SolutionDefinition]:
        return [
            s for s in solutions
            if s.is_platform_compatible(platform) and s.is_environment_compatible(is_desktop)
        ]

    def dependencies_of(self, solution_id: str) -> FrozenSet[str]:
        solution = self._solutions.get(solution_id)
        return solution.dependencies if solution else frozenset()

    def conflicts_of(self, solution_id: str) -> FrozenSet[str]:
        """Conflicting ids; both directions when symmetric conflicts are on."""
        return self._conflicts.get(solution_id, frozenset())


def load_catalog(path=None, symmetric_conflicts: bool = True) -> SolutionCatalog:
    """Load the catalog at path, or the bundled one."""
    return SolutionCatalog.from_yaml(path or DEFAULT_CATALOG_PATH, symmetric_conflicts=symmetric_conflicts)
