"""
Core infrastructure package.

Provides:
- Configuration management via pydantic-settings
- The engine exception taxonomy
- The tenacity-backed retry policy applied to every store call
- Async PostgreSQL pool lifecycle via asyncpg

Engine wiring (campaign_engine.core.context) and FastAPI dependencies
(campaign_engine.core.dependencies) import the service layer and are
imported from their modules directly.

Usage Examples:
    from campaign_engine.core import get_settings, RetryPolicy
    settings = get_settings()
    retry = RetryPolicy.from_settings(settings)
"""

# =============================================================================
# Re-exports from campaign_engine.core.config
# =============================================================================
from campaign_engine.core.config import Settings, get_settings

# =============================================================================
# Re-exports from campaign_engine.core.errors
# =============================================================================
from campaign_engine.core.errors import (
    EngineError,
    ValidationError,
    ConfigurationError,
    DependencyUnavailable,
    BudgetExceeded,
    NotFoundError,
    InvalidStateError,
    NoClearWinner,
)

# =============================================================================
# Re-exports from campaign_engine.core.retry
# =============================================================================
from campaign_engine.core.retry import RetryPolicy, TRANSIENT_ERRORS

# =============================================================================
# Re-exports from campaign_engine.core.database
# =============================================================================
from campaign_engine.core.database import create_pool, ensure_schema, close_pool

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "EngineError",
    "ValidationError",
    "ConfigurationError",
    "DependencyUnavailable",
    "BudgetExceeded",
    "NotFoundError",
    "InvalidStateError",
    "NoClearWinner",
    # Retry
    "RetryPolicy",
    "TRANSIENT_ERRORS",
    # Database
    "create_pool",
    "ensure_schema",
    "close_pool",
]
