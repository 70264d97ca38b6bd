"""
FastAPI dependency injection for the campaign engine API.

Key Dependencies Provided:
- get_engine_context: The EngineContext stored on app.state at startup
- get_settings_dependency: The cached Settings singleton
- EngineDep / SettingsDep: Annotated aliases for endpoint signatures

Usage Examples:
    @router.get("/ledger/stats")
    async def ledger_stats(engine: EngineDep) -> LedgerStats:
        return await engine.ledger.system_stats()

Note:
    Tests replace the context with app.dependency_overrides:
    app.dependency_overrides[get_engine_context] = lambda: test_context
"""

from typing import Annotated

from fastapi import Depends, Request

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.core.context import EngineContext


# =============================================================================
# Engine Context Dependency
# =============================================================================

def get_engine_context(request: Request) -> EngineContext:
    """
    Return the EngineContext built in the application lifespan.

    Raises:
        RuntimeError: The application started without a context (lifespan not run).
    """
    context = getattr(request.app.state, 'engine', None)
    if context is None:
        raise RuntimeError("Engine context is not initialized")
    return context


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """Thin wrapper around get_settings() so tests can override it."""
    return get_settings()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(engine: EngineDep)
EngineDep = Annotated[EngineContext, Depends(get_engine_context)]

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
