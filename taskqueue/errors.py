"""Structured errors for the task queue.

Every failure the manager reports carries a stable ``code`` so the tool
layer can translate it without matching on message text.
"""

from __future__ import annotations

import errno as _errno
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Input validation
    MISSING_PARAMETER = "ERR_1000"
    INVALID_IDENTIFIER = "ERR_1001"
    INVALID_ARGUMENT = "ERR_1002"
    INVALID_STATE_FILTER = "ERR_1003"
    INVALID_PROVIDER = "ERR_1004"

    # Lookup
    PROJECT_NOT_FOUND = "ERR_2000"
    TASK_NOT_FOUND = "ERR_2001"

    # Lifecycle rules
    INVALID_STATUS_TRANSITION = "ERR_3000"
    MISSING_COMPLETED_DETAILS = "ERR_3001"
    TASK_NOT_DONE = "ERR_3002"
    TASKS_NOT_ALL_DONE = "ERR_3003"
    TASKS_NOT_ALL_APPROVED = "ERR_3004"
    PROJECT_ALREADY_COMPLETED = "ERR_3005"
    CANNOT_MODIFY_APPROVED_TASK = "ERR_3006"
    CANNOT_DELETE_COMPLETED_TASK = "ERR_3007"
    PROJECT_HAS_NO_TASKS = "ERR_3008"

    # Storage
    FILE_WRITE_ERROR = "ERR_4000"
    READ_ONLY_FILESYSTEM = "ERR_4001"

    # Plan generation
    INVALID_PLAN_RESPONSE = "ERR_5001"
    PLAN_RATE_LIMITED = "ERR_5002"
    PLAN_AUTH_FAILED = "ERR_5003"


class TaskQueueError(Exception):
    """Base class for every failure reported by the task queue."""

    category = "error"

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "error": self.message,
            "code": self.code.value,
            "category": self.category,
            "details": dict(self.details),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class NotFoundError(TaskQueueError):
    category = "not_found"


class InvalidIdentifierError(TaskQueueError):
    category = "invalid_identifier"

    def __init__(self, identifier: str, expected_prefix: str):
        super().__init__(
            ErrorCode.INVALID_IDENTIFIER,
            f"Invalid identifier '{identifier}': expected the form '{expected_prefix}-<number>'",
            {"identifier": identifier, "expected_prefix": expected_prefix},
        )


class InvalidArgumentError(TaskQueueError):
    category = "invalid_argument"


class InvalidTransitionError(TaskQueueError):
    category = "invalid_transition"

    def __init__(self, current: str, requested: str, allowed: List[str]):
        super().__init__(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Invalid status transition from '{current}' to '{requested}'. "
            f"Allowed transitions: {', '.join(allowed) if allowed else 'none'}",
            {"current": current, "requested": requested, "allowed": list(allowed)},
        )


class PreconditionError(TaskQueueError):
    category = "precondition"


class UpstreamGenerationError(TaskQueueError):
    """Plan generator failure; ``retryable`` tells callers whether to try again."""

    category = "upstream_generation"

    @property
    def retryable(self) -> bool:
        return self.code in (ErrorCode.PLAN_RATE_LIMITED, ErrorCode.INVALID_PLAN_RESPONSE)


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Translate a failure into the dictionary shape returned by the tool layer.

    Storage failures reach the caller as the original ``OSError``; they are
    classified here rather than wrapped where they are raised.
    """
    if isinstance(exc, TaskQueueError):
        return exc.to_dict()
    if isinstance(exc, OSError):
        code = ErrorCode.READ_ONLY_FILESYSTEM if exc.errno == _errno.EROFS else ErrorCode.FILE_WRITE_ERROR
        return {
            "error": f"Failed to persist task data: {exc}",
            "code": code.value,
            "category": "storage_fatal",
            "details": {
                "errno": exc.errno,
                "filename": str(exc.filename) if exc.filename else None,
            },
        }
    raise TypeError(f"Cannot translate {type(exc).__name__} into an error payload")
