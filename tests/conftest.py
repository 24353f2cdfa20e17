"""Shared fixtures for the task queue test suite."""

import pytest

from taskqueue.manager import TaskManager
from taskqueue.taskqueue_logging import observability_hooks, performance_monitor


@pytest.fixture
def task_file(tmp_path):
    """Path of a task document that does not exist yet."""
    return tmp_path / "data" / "tasks.json"


@pytest.fixture
def manager(task_file):
    return TaskManager(task_file)


@pytest.fixture
def sample_tasks():
    return [
        {"title": "Design schema", "description": "Sketch the tables"},
        {"title": "Write migrations", "description": "Alembic scripts"},
        {"title": "Seed data", "description": "Load fixtures"},
    ]


@pytest.fixture(autouse=True)
def _reset_observability():
    yield
    observability_hooks.hooks.clear()
    performance_monitor.reset()


@pytest.fixture
def complete_task():
    """Walk a task from not started to done."""
    def _complete(manager, project_id, task_id, details="Done"):
        manager.update_task(project_id, task_id, status="in progress")
        return manager.update_task(project_id, task_id, status="done", completed_details=details)

    return _complete
