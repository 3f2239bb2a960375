"""Mapping of engine errors to HTTP responses."""

from fastapi import HTTPException

from rtm_triage.core.exceptions import (
    AlertNotFoundError,
    ClaimConflictError,
    ConflictError,
    ValidationError,
)


def to_http_exception(error: Exception) -> HTTPException:
    """Translate an engine error into an HTTPException with a stable code.

    Clients tell a lost claim from an invalid or terminal transition by the
    ``code`` field; all three are 409.
    """
    if isinstance(error, AlertNotFoundError):
        return HTTPException(
            status_code=404, detail={"code": "not_found", "message": str(error)}
        )
    if isinstance(error, ClaimConflictError):
        return HTTPException(
            status_code=409,
            detail={"code": error.code, "message": str(error), "claimed_by": error.claimed_by},
        )
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=409, detail={"code": error.code, "message": str(error)}
        )
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=400, detail={"code": "validation_error", "message": str(error)}
        )
    return HTTPException(status_code=500, detail=str(error))
