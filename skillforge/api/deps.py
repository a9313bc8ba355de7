"""
Shared route dependencies and domain-error translation.
"""
import logging

from fastapi import HTTPException

from skillforge.core.config import ProgressionConfig, get_config
from skillforge.core.errors import (
    ExternalServiceError,
    InconsistentStateError,
    InvalidTransitionError,
    NotFoundError,
    ProgressionError,
    ProposalClosedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def get_progression_config() -> ProgressionConfig:
    """FastAPI dependency so tests can swap in a smaller config."""
    return get_config()


def http_error(exc: ProgressionError) -> HTTPException:
    """Map a domain error onto the HTTP status the API promises."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, ProposalClosedError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ExternalServiceError):
        return HTTPException(
            status_code=503,
            detail={"error": str(exc), "retryable": exc.retryable},
        )
    if isinstance(exc, InconsistentStateError):
        # Already logged and rebuilt from the ledger by verify_projection
        return HTTPException(
            status_code=500,
            detail={"error": str(exc), "rebuilt": True},
        )
    logger.exception("[API] unhandled progression error")
    return HTTPException(status_code=500, detail=str(exc))
