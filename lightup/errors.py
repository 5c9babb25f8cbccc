"""
Lightup Error Hierarchy

Base error and specific error types for all Lightup components.
Errors carry metadata for structured logging and the HTTP status the API edge
reports for them.
"""

from typing import Any, Dict, Optional


class LightupError(RuntimeError):
    """
    Base error for Lightup components. Carries metadata for structured logging.

    Attributes:
        category: Error category for classification (e.g., "validation", "git")
        retryable: Whether the operation can be retried
        status_code: HTTP status the API edge maps this error to
        metadata: Additional context for logging and debugging
    """

    category: str = "runtime"
    retryable: bool = False
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


# Lookup Errors
class NotFoundError(LightupError):
    """Raised when a requested resource does not exist."""

    category = "not_found"
    status_code = 404


class EntityNotFoundError(NotFoundError, KeyError):
    """Raised by storage when a row is missing; also a KeyError for dict-style callers."""

    def __str__(self) -> str:
        return self.message


# Validation Errors
class BadRequestError(LightupError):
    """Raised when a request is malformed or not allowed in the current state."""

    category = "validation"
    status_code = 400


class ValidationError(BadRequestError):
    """Raised when input validation fails."""


class StageTransitionError(BadRequestError):
    """Raised when a stage name is unknown or a move is not a legal edge."""


class MergeInProgressError(BadRequestError):
    """Raised when another card holds the merge lock for a repository."""

    category = "git"


# Auth Errors
class UnauthorizedError(LightupError):
    """Raised when credentials are missing or invalid."""

    category = "auth"
    status_code = 401


# Internal Errors
class InternalError(LightupError):
    """Raised for I/O, serialization and other unexpected failures."""

    category = "internal"


class ConfigError(InternalError):
    """Raised when configuration is invalid or missing."""

    category = "config"


# Git Errors
class GitCommandError(InternalError):
    """Raised when git commands fail."""

    category = "git"


# Agent runtime Errors
class AgentRuntimeError(LightupError):
    """Raised when the OpenCode agent runtime cannot be reached or rejects a call."""

    category = "opencode"
    retryable = True
    status_code = 502


class QuestionTimeoutError(LightupError):
    """Raised when a question is not answered before the ask deadline."""

    category = "question"
    status_code = 504
