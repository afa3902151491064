"""
Mapping of job runner errors to HTTP errors.
"""

from fastapi import HTTPException, status

from mdrunner.errors import (
    ConsistencyError,
    JobNotFoundError,
    JobRunnerError,
    SubmissionError,
    TransportError,
    UnsupportedCapabilityError,
    ValidationError,
)


def http_error(error: JobRunnerError) -> HTTPException:
    """Translate a JobRunnerError into the HTTPException to raise."""
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error.result.to_dict(),
        )
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConsistencyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, SubmissionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, TransportError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    if isinstance(error, UnsupportedCapabilityError):
        return HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
