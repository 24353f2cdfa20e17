"""Task queue - project and task state store with an approval-gated lifecycle."""

from .errors import (
    ErrorCode,
    InvalidArgumentError,
    InvalidIdentifierError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    TaskQueueError,
    UpstreamGenerationError,
    error_payload,
)
from .manager import TaskManager
from .models import Project, StoreState, Task
from .store import TaskStore

__all__ = [
    "ErrorCode",
    "InvalidArgumentError",
    "InvalidIdentifierError",
    "InvalidTransitionError",
    "NotFoundError",
    "PreconditionError",
    "Project",
    "StoreState",
    "Task",
    "TaskManager",
    "TaskQueueError",
    "TaskStore",
    "UpstreamGenerationError",
    "error_payload",
]
