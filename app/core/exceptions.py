from fastapi import HTTPException
from typing import Dict, Any, Optional


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str, headers: Dict[str, Any] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class AuthenticationException(APIException):
    def __init__(self, detail: str = "Invalid or missing update token"):
        super().__init__(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


class NotFoundException(APIException):
    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=f"Not Found: {detail}")


class ValidationException(APIException):
    def __init__(self, detail: str):
        super().__init__(status_code=422, detail=f"Validation Error: {detail}")


# =============================================================================
# PROFILE CACHE ERRORS
# =============================================================================

class ProfileCacheError(Exception):
    """Base class for profile cache failures"""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ExternalFetchError(ProfileCacheError):
    """Provider call returned no usable profile payload"""
    pass


class PersistenceError(ProfileCacheError):
    """The atomic replace transaction could not commit"""
    pass


class OperationalError(ProfileCacheError):
    """Any other unexpected failure, e.g. the database is unreachable"""
    pass
