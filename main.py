"""MCP server exposing the task queue as tools."""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from taskqueue import TaskManager, TaskQueueError, error_payload
from taskqueue.config import log_file, log_level, resolve_file_path
from taskqueue.taskqueue_logging import log_error_with_context, setup_logging

mcp = FastMCP("taskqueue")

logger = logging.getLogger("taskqueue.server")


def _manager() -> TaskManager:
    # Resolved per call so TASK_MANAGER_FILE_PATH changes take effect without a restart.
    return TaskManager(resolve_file_path())


def _tool_result(func: Callable[..., Dict[str, Any]]) -> Callable[..., Dict[str, Any]]:
    """Turn task queue failures into error payloads instead of exceptions."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TaskQueueError as e:
            return error_payload(e)
        except OSError as e:
            log_error_with_context(e, {"operation": func.__name__})
            return error_payload(e)

    return wrapper


# ---------------------------------------------------------------------------
# Project tools
# ---------------------------------------------------------------------------


@mcp.tool()
@_tool_result
def list_projects(state: Optional[str] = None) -> Dict[str, Any]:
    """List all projects with task counts.
    Optional state filter: 'open', 'pending_approval', 'completed' or 'all'."""

    return _manager().list_projects(state)


@mcp.tool()
@_tool_result
def read_project(projectId: str) -> Dict[str, Any]:
    """Read all information for a project (e.g. proj-1), including its tasks' statuses."""

    return _manager().read_project(projectId)


@mcp.tool()
@_tool_result
def create_project(
    initialPrompt: str,
    tasks: List[Dict[str, str]],
    projectPlan: Optional[str] = None,
    autoApprove: bool = False,
) -> Dict[str, Any]:
    """Create a new project from an initial prompt and an ordered list of tasks.
    Each task needs a 'title' and a 'description'; 'toolRecommendations' and
    'ruleRecommendations' are optional. With autoApprove, tasks are approved
    as soon as they are marked done."""

    return _manager().create_project(initialPrompt, tasks, project_plan=projectPlan, auto_approve=autoApprove)


@mcp.tool()
@_tool_result
def delete_project(projectId: str) -> Dict[str, Any]:
    """Delete a project and all its associated tasks."""

    return _manager().delete_project(projectId)


@mcp.tool()
@_tool_result
def add_tasks_to_project(projectId: str, tasks: List[Dict[str, str]]) -> Dict[str, Any]:
    """Append new tasks to an existing project that has not been finalized."""

    return _manager().add_tasks_to_project(projectId, tasks)


@mcp.tool()
@_tool_result
def finalize_project(projectId: str) -> Dict[str, Any]:
    """Mark a project as complete. Only succeeds when every task is done and approved."""

    return _manager().finalize_project(projectId)


@mcp.resource("taskqueue://projects")
def resource_projects() -> str:
    """Resource view listing projects and their progress."""

    projects = _manager().list_projects()["projects"]
    if not projects:
        return "No projects have been created yet."

    lines = ["Task Queue Projects"]
    for project in projects:
        lines.append("")
        lines.append(f"- {project['projectId']}: {project['initialPrompt']}")
        lines.append(
            f"  Tasks: {project['totalTasks']} total, {project['completedTasks']} done, "
            f"{project['approvedTasks']} approved"
        )
        if project["completed"]:
            lines.append("  Finalized")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Task tools
# ---------------------------------------------------------------------------


@mcp.tool()
@_tool_result
def list_tasks(projectId: Optional[str] = None, state: Optional[str] = None) -> Dict[str, Any]:
    """List tasks across all projects or within one, optionally filtered by state
    ('open', 'pending_approval', 'completed' or 'all')."""

    return _manager().list_tasks(projectId, state)


@mcp.tool()
@_tool_result
def read_task(taskId: str) -> Dict[str, Any]:
    """Get details of a specific task (e.g. task-1) and its project."""

    return _manager().read_task(taskId)


@mcp.tool()
@_tool_result
def create_task(
    projectId: str,
    title: str,
    description: str,
    toolRecommendations: Optional[str] = None,
    ruleRecommendations: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a new task at the end of an existing project."""

    return _manager().create_task(
        projectId,
        title,
        description,
        tool_recommendations=toolRecommendations,
        rule_recommendations=ruleRecommendations,
    )


@mcp.tool()
@_tool_result
def update_task(
    projectId: str,
    taskId: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    completedDetails: Optional[str] = None,
    toolRecommendations: Optional[str] = None,
    ruleRecommendations: Optional[str] = None,
) -> Dict[str, Any]:
    """Modify a task's title, description or status.
    Status moves 'not started' -> 'in progress' -> 'done' (and back one step).
    completedDetails is required when setting status to 'done'. Approved tasks cannot be changed."""

    return _manager().update_task(
        projectId,
        taskId,
        title=title,
        description=description,
        status=status,
        completed_details=completedDetails,
        tool_recommendations=toolRecommendations,
        rule_recommendations=ruleRecommendations,
    )


@mcp.tool()
@_tool_result
def delete_task(projectId: str, taskId: str) -> Dict[str, Any]:
    """Remove a task that is not yet done."""

    return _manager().delete_task(projectId, taskId)


@mcp.tool()
@_tool_result
def approve_task(projectId: str, taskId: str) -> Dict[str, Any]:
    """Approve a completed task. Approving an already approved task is a no-op."""

    return _manager().approve_task(projectId, taskId)


@mcp.tool()
@_tool_result
def get_next_task(projectId: str) -> Dict[str, Any]:
    """Get the next task to work on: the first in-progress task, else the first
    not-started one. Returns task null when every task is done."""

    return _manager().get_next_task(projectId)


def main() -> None:
    setup_logging(log_level(), log_file())
    logger.info(f"Serving task file {resolve_file_path()}")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
