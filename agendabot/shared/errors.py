"""Translate domain errors into HTTP responses for the admin API"""

from fastapi import HTTPException, status

from ..exceptions import (
    AgendaError,
    ConflictError,
    ExternalServiceError,
    InvariantViolation,
    NotFoundError,
    StaleConversationState,
    ValidationError,
)


def http_error(error: AgendaError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, (ConflictError, InvariantViolation, StaleConversationState)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ExternalServiceError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
