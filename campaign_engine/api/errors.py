"""
Translation of engine exceptions into HTTP errors.

Endpoints catch EngineError and re-raise the result of to_http_exception().
The response detail is the exception's to_dict() payload.

Status Mapping:
- ValidationError        -> 400
- NotFoundError          -> 404
- InvalidStateError      -> 409
- NoClearWinner          -> 409
- BudgetExceeded         -> 409
- ConfigurationError     -> 422
- DependencyUnavailable  -> 503
"""

import logging
from typing import Dict, Type

from fastapi import HTTPException

from campaign_engine.core.errors import (
    BudgetExceeded,
    ConfigurationError,
    DependencyUnavailable,
    EngineError,
    InvalidStateError,
    NoClearWinner,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: Dict[Type[EngineError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    NoClearWinner: 409,
    BudgetExceeded: 409,
    ConfigurationError: 422,
    DependencyUnavailable: 503,
}


def to_http_exception(error: EngineError) -> HTTPException:
    status_code = 500
    for error_type, code in STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"Engine error: {error}")
    return HTTPException(status_code=status_code, detail=error.to_dict())
