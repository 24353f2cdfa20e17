"""Data models for the task queue.

This module contains the entity graph persisted by the store: projects
holding ordered tasks, the status transition table that governs task
lifecycles, and the derived states used for filtering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Task statuses
NOT_STARTED = "not started"
IN_PROGRESS = "in progress"
DONE = "done"

TASK_STATUSES = (NOT_STARTED, IN_PROGRESS, DONE)

# Allowed status changes, keyed by current status. Requesting the current
# status again is a no-op and is not listed here.
VALID_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    NOT_STARTED: (IN_PROGRESS,),
    IN_PROGRESS: (DONE, NOT_STARTED),
    DONE: (IN_PROGRESS,),
}

# Derived states used by list filters
STATE_OPEN = "open"
STATE_PENDING_APPROVAL = "pending_approval"
STATE_COMPLETED = "completed"
STATE_ALL = "all"

FILTER_STATES = (STATE_OPEN, STATE_PENDING_APPROVAL, STATE_COMPLETED, STATE_ALL)

PROJECT_PREFIX = "proj"
TASK_PREFIX = "task"

_ID_PATTERN = re.compile(r"(proj|task)-([0-9]+)")


def parse_identifier(identifier: Any, prefix: str) -> Optional[int]:
    """Return the numeric suffix of ``<prefix>-<n>``, or None when malformed."""
    if not isinstance(identifier, str):
        return None
    match = _ID_PATTERN.fullmatch(identifier)
    if not match or match.group(1) != prefix:
        return None
    number = int(match.group(2))
    return number if number > 0 else None


def format_identifier(prefix: str, number: int) -> str:
    return f"{prefix}-{number}"


def allowed_transitions(current: str) -> Tuple[str, ...]:
    return VALID_TRANSITIONS.get(current, ())


def is_valid_transition(current: str, target: str) -> bool:
    return current == target or target in allowed_transitions(current)


@dataclass(slots=True)
class Task:
    """A single unit of work inside a project."""

    id: str
    title: str
    description: str
    status: str = NOT_STARTED
    approved: bool = False
    completed_details: str = ""
    tool_recommendations: Optional[str] = None
    rule_recommendations: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "approved": self.approved,
            "completedDetails": self.completed_details,
        }
        if self.tool_recommendations is not None:
            data["toolRecommendations"] = self.tool_recommendations
        if self.rule_recommendations is not None:
            data["ruleRecommendations"] = self.rule_recommendations
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from the persisted dictionary representation."""
        return cls(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            status=data.get("status", NOT_STARTED),
            approved=bool(data.get("approved", False)),
            completed_details=data.get("completedDetails") or "",
            tool_recommendations=data.get("toolRecommendations"),
            rule_recommendations=data.get("ruleRecommendations"),
        )

    @property
    def state(self) -> str:
        """Derived filter state of this task."""
        if self.status != DONE:
            return STATE_OPEN
        if not self.approved:
            return STATE_PENDING_APPROVAL
        return STATE_COMPLETED

    def matches_state(self, state: Optional[str]) -> bool:
        if state is None or state == STATE_ALL:
            return True
        return self.state == state

    def validate(self) -> List[str]:
        """Validate task data and return any issues.

        Identifier shape is not checked here; malformed ids are tolerated on
        load and simply do not count towards the watermark.
        """
        issues = []

        if not self.title:
            issues.append("Title is required")
        if not self.description:
            issues.append("Description is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if self.approved and self.status != DONE:
            issues.append("Approved task must be done")

        return issues


@dataclass(slots=True)
class Project:
    """A top-level unit of work with an ordered list of tasks."""

    project_id: str
    initial_prompt: str
    project_plan: str = ""
    tasks: List[Task] = field(default_factory=list)
    completed: bool = False
    auto_approve: bool = False

    def __post_init__(self) -> None:
        if not self.project_plan:
            self.project_plan = self.initial_prompt

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary representation."""
        return {
            "projectId": self.project_id,
            "initialPrompt": self.initial_prompt,
            "projectPlan": self.project_plan,
            "completed": self.completed,
            "autoApprove": self.auto_approve,
            "tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Create from the persisted dictionary representation."""
        tasks = data.get("tasks", [])
        if not isinstance(tasks, list):
            raise ValueError(f"Project {data.get('projectId')!r} has a non-list 'tasks' field")
        return cls(
            project_id=data["projectId"],
            initial_prompt=data["initialPrompt"],
            project_plan=data.get("projectPlan") or data["initialPrompt"],
            tasks=[Task.from_dict(item) for item in tasks],
            completed=bool(data.get("completed", False)),
            auto_approve=bool(data.get("autoApprove", False)),
        )

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def all_done(self) -> bool:
        return all(task.status == DONE for task in self.tasks)

    def all_approved(self) -> bool:
        return all(task.status == DONE and task.approved for task in self.tasks)

    def matches_state(self, state: Optional[str]) -> bool:
        """Check the project against a list filter."""
        if state is None or state == STATE_ALL:
            return True
        if state == STATE_OPEN:
            return not self.completed and any(task.status != DONE for task in self.tasks)
        if state == STATE_PENDING_APPROVAL:
            return any(task.status == DONE and not task.approved for task in self.tasks)
        if state == STATE_COMPLETED:
            return self.completed
        return False

    def summary(self) -> Dict[str, Any]:
        """Counts used by progress displays."""
        return {
            "projectId": self.project_id,
            "initialPrompt": self.initial_prompt,
            "projectPlan": self.project_plan,
            "completed": self.completed,
            "autoApprove": self.auto_approve,
            "totalTasks": len(self.tasks),
            "completedTasks": sum(1 for task in self.tasks if task.status == DONE),
            "approvedTasks": sum(1 for task in self.tasks if task.approved),
        }


@dataclass(slots=True)
class StoreState:
    """Root container of all projects.

    The watermarks are derived from the identifiers present and are never
    persisted; ``recompute_watermarks`` rebuilds them after every load.
    """

    projects: List[Project] = field(default_factory=list)
    project_watermark: int = 0
    task_watermark: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"projects": [project.to_dict() for project in self.projects]}

    @classmethod
    def from_dict(cls, data: Any) -> "StoreState":
        if not isinstance(data, dict) or not isinstance(data.get("projects"), list):
            raise ValueError("Root document must be an object with a 'projects' list")
        state = cls(projects=[Project.from_dict(item) for item in data["projects"]])
        for project in state.projects:
            for task in project.tasks:
                issues = task.validate()
                if issues:
                    raise ValueError(f"Task {task.id!r} in project {project.project_id!r}: {'; '.join(issues)}")
        state.recompute_watermarks()
        return state

    def recompute_watermarks(self) -> None:
        project_numbers = [parse_identifier(p.project_id, PROJECT_PREFIX) for p in self.projects]
        task_numbers = [
            parse_identifier(t.id, TASK_PREFIX) for p in self.projects for t in p.tasks
        ]
        self.project_watermark = max((n for n in project_numbers if n is not None), default=0)
        self.task_watermark = max((n for n in task_numbers if n is not None), default=0)

    def allocate_project_id(self) -> str:
        self.project_watermark += 1
        return format_identifier(PROJECT_PREFIX, self.project_watermark)

    def allocate_task_id(self) -> str:
        self.task_watermark += 1
        return format_identifier(TASK_PREFIX, self.task_watermark)

    def find_project(self, project_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.project_id == project_id:
                return project
        return None

    def find_task(self, task_id: str) -> Optional[Tuple[Project, Task]]:
        for project in self.projects:
            task = project.find_task(task_id)
            if task is not None:
                return project, task
        return None
