"""Exception types used across shelfwatch."""

from typing import List, Optional


class ShelfwatchError(Exception):
    """Base class for shelfwatch errors."""


class CatalogValidationError(ShelfwatchError):
    """Raised at load time when the solution catalog is malformed."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.message = message
        self.problems = problems or []
        super().__init__(message)

    def __str__(self) -> str:
        if not self.problems:
            return self.message
        return self.message + ":\n  - " + "\n  - ".join(self.problems)


class ConfigurationError(ShelfwatchError):
    """Operation on an unknown or disabled solution.

    Public engine operations report this through their result objects
    rather than raising it.
    """

    def __init__(self, message: str, solution_id: Optional[str] = None):
        self.message = message
        self.solution_id = solution_id
        super().__init__(message)


class NetworkError(ShelfwatchError):
    """Raised when a fetch fails below the HTTP layer or times out."""

    def __init__(self, message: str, url: Optional[str] = None, timeout: bool = False):
        self.message = message
        self.url = url
        self.timeout = timeout
        super().__init__(message)


class ApplicationFailure(ShelfwatchError):
    """Raised while executing a remediation."""

    def __init__(self, message: str, solution_id: Optional[str] = None):
        self.message = message
        self.solution_id = solution_id
        super().__init__(message)
