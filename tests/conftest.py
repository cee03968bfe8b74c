"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from task_relay.workflow.models import TaskCreate, TaskView
from task_relay.workflow.repository import WorkflowRepository
from task_relay.workflow.services import WorkflowService


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[WorkflowRepository]:
    repo = WorkflowRepository(tmp_path / "workflow.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def service(repository: WorkflowRepository) -> WorkflowService:
    return WorkflowService(repository=repository)


@pytest.fixture()
def task(service: WorkflowService) -> TaskView:
    """Fresh not-started task with a stable id."""

    return service.create_task(TaskCreate(name="Implement login", task_id="TSK-1"))
