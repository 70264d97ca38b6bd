"""
Exception taxonomy for the campaign decision engine.

Services raise these exceptions; the API layer translates them into HTTP
responses (see campaign_engine.api). Read-only aggregation paths catch
DependencyUnavailable and degrade to documented defaults instead.

Hierarchy:
    EngineError
    ├── ValidationError        malformed or missing request fields (never retried)
    ├── ConfigurationError     configuration invariant violated at creation time
    ├── DependencyUnavailable  a backing store could not be reached
    ├── BudgetExceeded         estimated campaign cost above the budget ceiling
    ├── NotFoundError          unknown strategy, experiment, variant or record
    ├── InvalidStateError      lifecycle transition not allowed
    └── NoClearWinner          winner requested before significance holds
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    def to_dict(self) -> Dict[str, Any]:
        return {'error': type(self).__name__, 'message': str(self)}


class ValidationError(EngineError):
    """
    A request field failed validation.

    Attributes:
        field: Dotted path of the offending field (e.g. 'context.platforms').
        message: Human-readable reason.
        details: Optional extra context for the caller.
    """

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.field = field
        self.message = message
        self.details = details or {}
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': 'ValidationError',
            'field': self.field,
            'message': self.message,
            'details': self.details,
        }


class ConfigurationError(EngineError):
    """A configuration invariant does not hold (e.g. allocations not summing to 100)."""


class DependencyUnavailable(EngineError):
    """A record store or state store call failed after the retry policy gave up."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        reason = f": {cause}" if cause is not None else ''
        super().__init__(f"{operation} unavailable{reason}")


class BudgetExceeded(EngineError):
    """Estimated campaign cost is above the supplied budget ceiling."""

    def __init__(self, estimated_cost: float, budget_max: float):
        self.estimated_cost = estimated_cost
        self.budget_max = budget_max
        super().__init__(
            f"Estimated cost {estimated_cost:.2f} exceeds budget ceiling {budget_max:.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': 'BudgetExceeded',
            'message': str(self),
            'estimatedCost': self.estimated_cost,
            'budgetMax': self.budget_max,
        }


class NotFoundError(EngineError):
    """An entity referenced by id does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class InvalidStateError(EngineError):
    """The requested lifecycle transition is not allowed from the current status."""


class NoClearWinner(EngineError):
    """Winner declaration attempted before the result is significant and powered."""

    def __init__(self, test_id: str, reason: str):
        self.test_id = test_id
        self.reason = reason
        super().__init__(f"No clear winner found for {test_id}: {reason}")
