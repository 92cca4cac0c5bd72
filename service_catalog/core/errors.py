"""
Error Handling System

Provides standardized error codes and exceptions for the entire application.
Every failure of a service-category operation is raised as one of the
ServiceError subclasses below and rendered by FastAPI as a structured
(code, message, details) response.
"""
from enum import Enum
from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """Standardized error codes for the entire application."""

    # Validation errors (VAL_xxx)
    VAL_MISSING_FIELD = "VAL_001"
    VAL_INVALID_SUB_SERVICES = "VAL_002"
    VAL_MISSING_MAIN_IMAGE = "VAL_003"
    VAL_INVALID_FILE = "VAL_004"
    VAL_FILE_TOO_LARGE = "VAL_005"
    VAL_UNKNOWN_SUB_SERVICE = "VAL_006"

    # Conflict errors (DUP_xxx)
    DUP_NAME = "DUP_001"
    DUP_SLUG = "DUP_002"

    # Lookup errors (NF_xxx)
    CATEGORY_NOT_FOUND = "NF_001"

    # Storage errors (STORAGE_xxx)
    STORAGE_WRITE_FAILED = "STORAGE_001"
    STORAGE_DELETE_FAILED = "STORAGE_003"

    # Persistence errors (DB_xxx)
    DB_WRITE_FAILED = "DB_001"


class ServiceError(HTTPException):
    """
    Base class for business logic errors.

    This exception is caught by FastAPI's exception handler and converted
    to a clean JSON response with standardized structure:

    {
        "code": "DUP_002",
        "message": "A service category with this slug already exists.",
        "details": {"slug": "web-design"}
    }
    """

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        if status_code is not None:
            self.http_status = status_code
        super().__init__(
            status_code=self.http_status,
            detail={
                "code": code.value,
                "message": message,
                "details": details or {}
            }
        )
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(ServiceError):
    """Missing or malformed input, including a missing main image on create."""
    http_status = status.HTTP_400_BAD_REQUEST


class DuplicateError(ServiceError):
    """Name or slug collision, from the pre-check or the unique index."""
    http_status = status.HTTP_409_CONFLICT


class NotFoundError(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND


class StorageWriteError(ServiceError):
    """An upload to the object store failed."""
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.STORAGE_WRITE_FAILED, message, details)


class StorageDeleteError(ServiceError):
    """Removing an object failed for a reason other than it being absent.

    Core operations log this and carry on; it is never returned to a client.
    """
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.STORAGE_DELETE_FAILED, message, details)


class PersistenceError(ServiceError):
    """Schema validation or unexpected database write failure."""
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.DB_WRITE_FAILED, message, details)


# Convenience functions for common errors
def validation_error(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ValidationError:
    """Create a validation error (400 Bad Request)."""
    return ValidationError(code, message, details)


def duplicate_error(field: str, value: str) -> DuplicateError:
    """Create a name/slug collision error (409 Conflict)."""
    code = ErrorCode.DUP_SLUG if field == "slug" else ErrorCode.DUP_NAME
    return DuplicateError(
        code,
        f"A service category with this {field} already exists.",
        {field: value},
    )


def not_found_error(category_id: str) -> NotFoundError:
    """Create a not-found error (404 Not Found)."""
    return NotFoundError(
        ErrorCode.CATEGORY_NOT_FOUND,
        "Service category not found.",
        {"id": category_id},
    )
