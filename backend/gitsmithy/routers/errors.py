"""
Translation of service exceptions into HTTP errors.
"""

from fastapi import HTTPException

from gitsmithy.services.errors import (
    GitSmithyError,
    InternalError,
    InvalidRepositoryNameError,
    InvalidServiceError,
    NoParentError,
    NotFoundError,
    RepositoryExistsError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (NoParentError, 404),
    (InvalidServiceError, 400),
    (InvalidRepositoryNameError, 400),
    (RepositoryExistsError, 409),
    (InternalError, 500),
)


def http_error(e: GitSmithyError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
