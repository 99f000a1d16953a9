"""
Typed parameter models for parameterised solutions.

SolutionConfig.parameters stays a free-form map so new catalog entries work
without code changes. Solutions listed in PARAMETER_MODELS are validated
against their model when they are applied.
"""

from typing import Any, Dict, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SolutionParameters(BaseModel):
    """Base for per-solution parameters; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")


class IncreaseDelaysParameters(SolutionParameters):
    min_delay_ms: int = Field(
        default=2000,
        description="Minimum delay between requests in milliseconds",
        ge=0,
    )
    max_delay_ms: int = Field(
        default=8000,
        description="Maximum delay between requests in milliseconds",
        ge=0,
    )
    multiplier: float = Field(
        default=1.5,
        description="Factor applied to the delay window after a detection",
        ge=1.0,
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "IncreaseDelaysParameters":
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        return self


class ExponentialBackoffParameters(SolutionParameters):
    base_delay_ms: int = Field(
        default=1000,
        description="Delay before the first retry in milliseconds",
        ge=0,
    )
    max_delay_ms: int = Field(
        default=300000,
        description="Ceiling for any single backoff delay in milliseconds",
        ge=0,
    )
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(
        default=0.1,
        description="Random jitter as a fraction of the base delay",
        ge=0.0,
        le=1.0,
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "ExponentialBackoffParameters":
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must not exceed max_delay_ms")
        return self


class RotateUserAgentsParameters(SolutionParameters):
    rotation_interval: int = Field(
        default=10,
        description="Requests served by one user agent before rotating",
        ge=1,
    )
    include_desktop: bool = True
    include_mobile: bool = False
    include_firefox: bool = True
    include_chrome: bool = True
    include_safari: bool = False

    @model_validator(mode="after")
    def _check_pool(self) -> "RotateUserAgentsParameters":
        if not (self.include_firefox or self.include_chrome or self.include_safari):
            raise ValueError("at least one browser family must be included")
        if not (self.include_desktop or self.include_mobile):
            raise ValueError("at least one of desktop or mobile agents must be included")
        return self


class RandomizeHeadersParameters(SolutionParameters):
    rotate_accept_language: bool = True
    rotate_accept_encoding: bool = False
    add_custom_headers: bool = False
    randomize_order: bool = False


class ReduceConcurrencyParameters(SolutionParameters):
    max_concurrent: int = Field(default=1, ge=1, le=32)
    queue_delay_ms: int = Field(default=1000, ge=0)


class RandomTimingJitterParameters(SolutionParameters):
    jitter_percent: float = Field(default=20, ge=0, le=100)
    min_jitter_ms: int = Field(default=500, ge=0)
    max_jitter_ms: int = Field(default=3000, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RandomTimingJitterParameters":
        if self.min_jitter_ms > self.max_jitter_ms:
            raise ValueError("min_jitter_ms must not exceed max_jitter_ms")
        return self


PARAMETER_MODELS: Dict[str, Type[SolutionParameters]] = {
    "increase_delays": IncreaseDelaysParameters,
    "exponential_backoff": ExponentialBackoffParameters,
    "rotate_user_agents": RotateUserAgentsParameters,
    "randomize_headers": RandomizeHeadersParameters,
    "reduce_concurrency": ReduceConcurrencyParameters,
    "random_timing_jitter": RandomTimingJitterParameters,
}


def validate_parameters(solution_id: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a merged parameter map for a solution.

    Args:
        solution_id: Catalog id
        parameters: Parameters after merging overrides over the stored map

    Returns:
        The normalized parameter map (unchanged for untyped solutions)

    Raises:
        pydantic.ValidationError: if a typed solution's parameters are invalid
    """
    model = PARAMETER_MODELS.get(solution_id)
    if model is None:
        return dict(parameters)
    return model.model_validate(parameters).model_dump()
