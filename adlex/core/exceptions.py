"""Custom exception hierarchy."""

import asyncio
from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class DetectionError(AppError):
    """Raised when the violation detector returns an unusable response."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class NotFoundError(AppError):
    """Raised when a requested record does not exist."""
    pass


class AccessDeniedError(AppError):
    """Raised when a user may not view or modify a check."""
    pass


class CheckStateError(AppError):
    """Raised when a check cannot move to the requested status."""
    pass


class StreamTimeoutError(AppError):
    """Raised when a streaming subscription gives up waiting for a result."""
    pass


def describe_failure(error: BaseException) -> str:
    """Map a processing failure to the message stored on a failed check."""
    if isinstance(error, (asyncio.TimeoutError, APITimeoutError)):
        return "Analysis timed out. Please try again with a shorter text."
    if isinstance(error, DetectionError):
        return f"The analysis model returned an invalid response: {error}"
    if isinstance(error, APIClientError):
        return f"The analysis service is unavailable: {error}"
    if isinstance(error, DatabaseError):
        return f"Failed to save the analysis result: {error}"
    if isinstance(error, AppError):
        return str(error)
    return f"Unexpected error during analysis: {error}"
