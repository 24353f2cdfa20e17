"""Task manager: the authority over projects, tasks and their lifecycle.

Every public operation reloads the store, validates the request against
the freshly loaded state, applies the mutation and saves the whole
document back. Nothing is mutated until every check has passed, so a
failed call leaves the stored state untouched.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from .errors import (
    ErrorCode,
    InvalidArgumentError,
    InvalidIdentifierError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
)
from .models import (
    DONE,
    FILTER_STATES,
    IN_PROGRESS,
    NOT_STARTED,
    PROJECT_PREFIX,
    TASK_PREFIX,
    TASK_STATUSES,
    Project,
    StoreState,
    Task,
    allowed_transitions,
    is_valid_transition,
    parse_identifier,
)
from .planning import PlanGenerator, PlannedTask, run_generator
from .store import TaskStore
from .taskqueue_logging import log_operation, observability_hooks

logger = logging.getLogger("taskqueue.manager")

TaskDefinition = Union[Mapping[str, Any], PlannedTask]


class TaskManager:
    """Create, mutate and query projects and tasks stored in one JSON file.

    Example:
        >>> manager = TaskManager("/tmp/tasks.json")
        >>> created = manager.create_project("Ship v1", [{"title": "Write docs", "description": "README"}])
        >>> manager.update_task(created["projectId"], created["tasks"][0]["id"], status="in progress")
    """

    def __init__(self, file_path: Optional[Path | str] = None, store: Optional[TaskStore] = None):
        self.store = store or TaskStore(file_path)
        self._lock = threading.RLock()

    @property
    def file_path(self) -> Path:
        return self.store.file_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str, *, mutating: bool = False, **fields: Any) -> Iterator[None]:
        """Serialize ``name`` within this process and, when mutating, across processes."""
        with self._lock, log_operation(name, **fields):
            if mutating:
                with self.store.lock():
                    yield
            else:
                yield

    @staticmethod
    def _require_id(identifier: Optional[str], prefix: str, label: str) -> str:
        if not identifier:
            raise InvalidArgumentError(ErrorCode.MISSING_PARAMETER, f"{label} is required")
        if parse_identifier(identifier, prefix) is None:
            raise InvalidIdentifierError(identifier, prefix)
        return identifier

    def _get_project(self, state: StoreState, project_id: Optional[str]) -> Project:
        project_id = self._require_id(project_id, PROJECT_PREFIX, "projectId")
        project = state.find_project(project_id)
        if project is None:
            raise NotFoundError(
                ErrorCode.PROJECT_NOT_FOUND,
                f"Project {project_id} not found",
                {"projectId": project_id},
            )
        return project

    def _get_task(self, project: Project, task_id: Optional[str]) -> Task:
        task_id = self._require_id(task_id, TASK_PREFIX, "taskId")
        task = project.find_task(task_id)
        if task is None:
            raise NotFoundError(
                ErrorCode.TASK_NOT_FOUND,
                f"Task {task_id} not found in project {project.project_id}",
                {"projectId": project.project_id, "taskId": task_id},
            )
        return task

    @staticmethod
    def _require_open_project(project: Project) -> None:
        if project.completed:
            raise PreconditionError(
                ErrorCode.PROJECT_ALREADY_COMPLETED,
                f"Project {project.project_id} is already completed",
                {"projectId": project.project_id},
            )

    @staticmethod
    def _require_text(value: Any, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgumentError(ErrorCode.INVALID_ARGUMENT, f"{label} must be a non-empty string")
        return value

    @staticmethod
    def _require_state(state: Optional[str]) -> Optional[str]:
        if state is None or state == "all":
            return None
        if state not in FILTER_STATES:
            raise InvalidArgumentError(
                ErrorCode.INVALID_STATE_FILTER,
                f"Invalid state filter '{state}'. Valid states: {', '.join(FILTER_STATES)}",
                {"state": state},
            )
        return state

    def _normalize_definitions(self, definitions: Optional[Iterable[TaskDefinition]]) -> List[Dict[str, Any]]:
        """Validate every task definition before any identifier is allocated."""
        if definitions is None:
            raise InvalidArgumentError(ErrorCode.MISSING_PARAMETER, "tasks is required")
        normalized = []
        for index, definition in enumerate(definitions):
            if isinstance(definition, PlannedTask):
                definition = definition.to_dict()
            if not isinstance(definition, Mapping):
                raise InvalidArgumentError(
                    ErrorCode.INVALID_ARGUMENT,
                    f"Task definition {index} must be an object with a title and a description",
                    {"index": index},
                )
            normalized.append({
                "title": self._require_text(definition.get("title"), f"tasks[{index}].title"),
                "description": self._require_text(definition.get("description"), f"tasks[{index}].description"),
                "toolRecommendations": definition.get("toolRecommendations"),
                "ruleRecommendations": definition.get("ruleRecommendations"),
            })
        return normalized

    @staticmethod
    def _build_tasks(state: StoreState, definitions: List[Dict[str, Any]]) -> List[Task]:
        return [
            Task(
                id=state.allocate_task_id(),
                title=definition["title"],
                description=definition["description"],
                tool_recommendations=definition["toolRecommendations"],
                rule_recommendations=definition["ruleRecommendations"],
            )
            for definition in definitions
        ]

    @staticmethod
    def _task_view(project: Project, task: Task) -> Dict[str, Any]:
        view = task.to_dict()
        view["projectId"] = project.project_id
        return view

    # ------------------------------------------------------------------
    # Project operations
    # ------------------------------------------------------------------

    def list_projects(self, state: Optional[str] = None) -> Dict[str, Any]:
        """List project summaries, optionally filtered by derived state."""
        with self._operation("list_projects", state=state):
            state_filter = self._require_state(state)
            store_state = self.store.load()
            projects = [p.summary() for p in store_state.projects if p.matches_state(state_filter)]
            return {
                "status": "projects_listed",
                "projects": projects,
                "count": len(projects),
                "filter": state_filter or "all",
            }

    def read_project(self, project_id: str) -> Dict[str, Any]:
        """Return a full snapshot of one project including its tasks."""
        with self._operation("read_project", project_id=project_id):
            project = self._get_project(self.store.load(), project_id)
            data = project.to_dict()
            data.update({k: v for k, v in project.summary().items() if k.endswith("Tasks")})
            return data

    def create_project(
        self,
        initial_prompt: str,
        tasks: Iterable[TaskDefinition],
        project_plan: Optional[str] = None,
        auto_approve: bool = False,
    ) -> Dict[str, Any]:
        """Create a project with its initial ordered task list."""
        with self._operation("create_project", mutating=True):
            self._require_text(initial_prompt, "initialPrompt")
            definitions = self._normalize_definitions(tasks)

            state = self.store.load()
            project = Project(
                project_id=state.allocate_project_id(),
                initial_prompt=initial_prompt,
                project_plan=project_plan or initial_prompt,
                tasks=self._build_tasks(state, definitions),
                auto_approve=bool(auto_approve),
            )
            state.projects.append(project)
            self.store.save(state)

            logger.info(f"Created project {project.project_id} with {len(project.tasks)} tasks")
            observability_hooks.log_event(
                "project_created",
                project_id=project.project_id,
                task_ids=[task.id for task in project.tasks],
                auto_approve=project.auto_approve,
            )
            return {
                "status": "planned",
                "projectId": project.project_id,
                "totalTasks": len(project.tasks),
                "autoApprove": project.auto_approve,
                "tasks": [task.to_dict() for task in project.tasks],
                "message": f"Project {project.project_id} created with {len(project.tasks)} tasks.",
            }

    def delete_project(self, project_id: str) -> Dict[str, Any]:
        """Delete a project and every task it owns."""
        with self._operation("delete_project", mutating=True, project_id=project_id):
            state = self.store.load()
            project = self._get_project(state, project_id)
            state.projects.remove(project)
            self.store.save(state)

            observability_hooks.log_event(
                "project_deleted",
                project_id=project.project_id,
                task_count=len(project.tasks),
            )
            return {
                "status": "project_deleted",
                "projectId": project.project_id,
                "message": f"Project {project.project_id} has been deleted.",
            }

    def add_tasks_to_project(self, project_id: str, tasks: Iterable[TaskDefinition]) -> Dict[str, Any]:
        """Append tasks to an existing, not yet completed project."""
        with self._operation("add_tasks_to_project", mutating=True, project_id=project_id):
            definitions = self._normalize_definitions(tasks)
            state = self.store.load()
            project = self._get_project(state, project_id)
            self._require_open_project(project)

            new_tasks = self._build_tasks(state, definitions)
            project.tasks.extend(new_tasks)
            self.store.save(state)

            observability_hooks.log_event(
                "tasks_added",
                project_id=project.project_id,
                task_ids=[task.id for task in new_tasks],
            )
            return {
                "status": "tasks_added",
                "projectId": project.project_id,
                "newTasks": [task.to_dict() for task in new_tasks],
                "totalTasks": len(project.tasks),
                "message": f"Added {len(new_tasks)} new tasks to project {project.project_id}.",
            }

    def finalize_project(self, project_id: str) -> Dict[str, Any]:
        """Mark a project completed once every task is done and approved. Irreversible."""
        with self._operation("finalize_project", mutating=True, project_id=project_id):
            state = self.store.load()
            project = self._get_project(state, project_id)
            self._require_open_project(project)

            if not project.all_done():
                pending = [task.id for task in project.tasks if task.status != DONE]
                raise PreconditionError(
                    ErrorCode.TASKS_NOT_ALL_DONE,
                    f"Not all tasks are done in project {project.project_id}",
                    {"projectId": project.project_id, "pendingTaskIds": pending},
                )
            if not project.all_approved():
                unapproved = [task.id for task in project.tasks if not task.approved]
                raise PreconditionError(
                    ErrorCode.TASKS_NOT_ALL_APPROVED,
                    f"Not all done tasks are approved in project {project.project_id}",
                    {"projectId": project.project_id, "unapprovedTaskIds": unapproved},
                )

            project.completed = True
            self.store.save(state)

            observability_hooks.log_event(
                "project_finalized",
                project_id=project.project_id,
                task_count=len(project.tasks),
            )
            return {
                "status": "project_approved_complete",
                "projectId": project.project_id,
                "message": "Project is fully completed and approved.",
            }

    approve_project_completion = finalize_project

    # ------------------------------------------------------------------
    # Task operations
    # ------------------------------------------------------------------

    def list_tasks(self, project_id: Optional[str] = None, state: Optional[str] = None) -> Dict[str, Any]:
        """List tasks across every project, or within one, optionally filtered by state."""
        with self._operation("list_tasks", project_id=project_id, state=state):
            state_filter = self._require_state(state)
            store_state = self.store.load()
            if project_id is not None:
                projects = [self._get_project(store_state, project_id)]
            else:
                projects = store_state.projects

            tasks = [
                self._task_view(project, task)
                for project in projects
                for task in project.tasks
                if task.matches_state(state_filter)
            ]
            return {
                "status": "tasks_listed",
                "projectId": project_id,
                "tasks": tasks,
                "count": len(tasks),
                "filter": state_filter or "all",
            }

    def read_task(self, task_id: str) -> Dict[str, Any]:
        """Return one task along with the context of the project that owns it."""
        with self._operation("read_task", task_id=task_id):
            task_id = self._require_id(task_id, TASK_PREFIX, "taskId")
            found = self.store.load().find_task(task_id)
            if found is None:
                raise NotFoundError(ErrorCode.TASK_NOT_FOUND, f"Task {task_id} not found", {"taskId": task_id})
            project, task = found
            return {
                "status": "task_details",
                "projectId": project.project_id,
                "initialPrompt": project.initial_prompt,
                "projectPlan": project.project_plan,
                "completed": project.completed,
                "task": task.to_dict(),
            }

    def create_task(
        self,
        project_id: str,
        title: str,
        description: str,
        tool_recommendations: Optional[str] = None,
        rule_recommendations: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append a single task to a project."""
        result = self.add_tasks_to_project(
            project_id,
            [{
                "title": title,
                "description": description,
                "toolRecommendations": tool_recommendations,
                "ruleRecommendations": rule_recommendations,
            }],
        )
        return {
            "status": "task_created",
            "projectId": result["projectId"],
            "task": result["newTasks"][0],
            "message": f"Task {result['newTasks'][0]['id']} added to project {result['projectId']}.",
        }

    def update_task(
        self,
        project_id: str,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        completed_details: Optional[str] = None,
        tool_recommendations: Optional[str] = None,
        rule_recommendations: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Edit a task and/or move it through the status state machine.

        Moving into ``done`` requires ``completed_details``; on an
        auto-approve project it also approves the task in the same write.
        """
        with self._operation("update_task", mutating=True, project_id=project_id, task_id=task_id, status=status):
            state = self.store.load()
            project = self._get_project(state, project_id)
            task = self._get_task(project, task_id)

            if task.approved:
                raise PreconditionError(
                    ErrorCode.CANNOT_MODIFY_APPROVED_TASK,
                    f"Cannot update an approved task: {task.id}",
                    {"projectId": project.project_id, "taskId": task.id},
                )
            self._require_open_project(project)

            if title is not None:
                self._require_text(title, "title")
            if description is not None:
                self._require_text(description, "description")

            previous_status = task.status
            has_details = bool(completed_details and completed_details.strip())
            if status is not None:
                if status not in TASK_STATUSES:
                    raise InvalidArgumentError(
                        ErrorCode.INVALID_ARGUMENT,
                        f"Invalid status '{status}'. Valid statuses: {', '.join(TASK_STATUSES)}",
                        {"status": status},
                    )
                if not is_valid_transition(task.status, status):
                    raise InvalidTransitionError(task.status, status, list(allowed_transitions(task.status)))
                if status == DONE and task.status != DONE and not has_details:
                    raise PreconditionError(
                        ErrorCode.MISSING_COMPLETED_DETAILS,
                        "completedDetails is required when setting status to 'done'",
                        {"projectId": project.project_id, "taskId": task.id},
                    )

            # All checks passed; apply.
            if title is not None:
                task.title = title
            if description is not None:
                task.description = description
            if tool_recommendations is not None:
                task.tool_recommendations = tool_recommendations
            if rule_recommendations is not None:
                task.rule_recommendations = rule_recommendations
            if status is not None:
                task.status = status
            if task.status == DONE and has_details:
                task.completed_details = completed_details
            if status == DONE and project.auto_approve:
                task.approved = True

            self.store.save(state)

            observability_hooks.log_event(
                "task_updated",
                project_id=project.project_id,
                task_id=task.id,
                previous_status=previous_status,
                status=task.status,
                approved=task.approved,
            )
            return {
                "status": "task_updated",
                "projectId": project.project_id,
                "task": task.to_dict(),
                "message": f"Task {task.id} has been updated.",
            }

    def delete_task(self, project_id: str, task_id: str) -> Dict[str, Any]:
        """Remove a task that has not been completed."""
        with self._operation("delete_task", mutating=True, project_id=project_id, task_id=task_id):
            state = self.store.load()
            project = self._get_project(state, project_id)
            task = self._get_task(project, task_id)
            self._require_open_project(project)
            if task.status == DONE:
                raise PreconditionError(
                    ErrorCode.CANNOT_DELETE_COMPLETED_TASK,
                    f"Cannot delete completed task: {task.id}",
                    {"projectId": project.project_id, "taskId": task.id},
                )

            project.tasks.remove(task)
            self.store.save(state)

            observability_hooks.log_event("task_deleted", project_id=project.project_id, task_id=task.id)
            return {
                "status": "task_deleted",
                "projectId": project.project_id,
                "taskId": task.id,
                "message": f"Task {task.id} has been deleted.",
            }

    def approve_task(self, project_id: str, task_id: str) -> Dict[str, Any]:
        """Approve a done task. Approving twice is a successful no-op."""
        with self._operation("approve_task", mutating=True, project_id=project_id, task_id=task_id):
            state = self.store.load()
            project = self._get_project(state, project_id)
            task = self._get_task(project, task_id)

            if task.status != DONE:
                raise PreconditionError(
                    ErrorCode.TASK_NOT_DONE,
                    f"Task {task.id} is not done yet (status: {task.status})",
                    {"projectId": project.project_id, "taskId": task.id, "status": task.status},
                )
            if task.approved:
                return {
                    "status": "already_approved",
                    "projectId": project.project_id,
                    "task": task.to_dict(),
                    "message": "Task already approved.",
                }
            self._require_open_project(project)

            task.approved = True
            self.store.save(state)

            observability_hooks.log_event("task_approved", project_id=project.project_id, task_id=task.id)
            return {
                "status": "task_approved",
                "projectId": project.project_id,
                "task": task.to_dict(),
                "message": f"Task {task.id} has been approved.",
            }

    approve_task_completion = approve_task

    def get_next_task(self, project_id: str) -> Dict[str, Any]:
        """Pick the task to work on next.

        The first in-progress task wins over any not-started task; when
        every task is done the result carries ``task: None``.
        """
        with self._operation("get_next_task", project_id=project_id):
            project = self._get_project(self.store.load(), project_id)
            if not project.tasks:
                raise PreconditionError(
                    ErrorCode.PROJECT_HAS_NO_TASKS,
                    f"Project {project.project_id} has no tasks",
                    {"projectId": project.project_id},
                )

            for wanted in (IN_PROGRESS, NOT_STARTED):
                for task in project.tasks:
                    if task.status == wanted:
                        return {
                            "status": "next_task",
                            "projectId": project.project_id,
                            "task": task.to_dict(),
                            "message": "Next task is ready. Task approval will be required after completion.",
                        }

            if project.completed:
                return {
                    "status": "already_completed",
                    "projectId": project.project_id,
                    "task": None,
                    "message": "Project already completed.",
                }
            return {
                "status": "all_tasks_done",
                "projectId": project.project_id,
                "task": None,
                "message": "All tasks have been completed. Awaiting task approval and project finalization.",
            }

    # ------------------------------------------------------------------
    # Plan generation
    # ------------------------------------------------------------------

    def generate_project_plan(
        self,
        prompt: str,
        generator: PlanGenerator,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        attachments: Optional[Iterable[str]] = None,
        auto_approve: bool = False,
    ) -> Dict[str, Any]:
        """Draft a project with ``generator`` and store it like a manual one.

        The generator runs outside the store lock; only the resulting
        ``create_project`` call touches the file.
        """
        plan = run_generator(generator, prompt, provider=provider, model=model, attachments=attachments)
        return self.create_project(
            prompt,
            plan.tasks,
            project_plan=plan.project_plan,
            auto_approve=auto_approve,
        )
