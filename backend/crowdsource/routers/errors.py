"""
Map engine errors onto HTTP status codes.
"""
from fastapi import HTTPException

from ..services.errors import (
    CrowdsourceError, ExternalServiceError, InvalidTransitionError,
    NotOwnerError, PreconditionError, ProblemNotFoundError, ValidationError,
)


def http_error(error: CrowdsourceError) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ProblemNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, NotOwnerError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, (InvalidTransitionError, PreconditionError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ExternalServiceError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
