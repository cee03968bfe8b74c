"""Task status/role state machine on top of the workflow repository."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from task_relay.errors import InvalidArgumentError, NotFoundError, StorageError
from task_relay.storage.common import utc_now
from task_relay.workflow.models import (
    OUTCOME_STATUS,
    RESUMABLE_STATUSES,
    SYSTEM_AUTHOR,
    CommentView,
    CompleteTaskRequest,
    CompletionOutcome,
    DelegateRequest,
    DelegationResult,
    DelegationView,
    StatusUpdateResult,
    TaskCreate,
    TaskDetails,
    TaskPriority,
    TaskStatus,
    TaskView,
    UpdateStatusRequest,
    WorkflowRole,
    is_terminal,
)
from task_relay.workflow.repository import WorkflowRepository

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_type: type[E], value: E | str, *, label: str) -> E:
    """Accept an enum member or its value, otherwise raise ``InvalidArgumentError``."""

    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as error:
        allowed = ", ".join(str(member.value) for member in enum_type)
        raise InvalidArgumentError(
            f"Invalid {label} {value!r}; expected one of: {allowed}.",
        ) from error


@contextmanager
def storage_errors(operation: str, task_id: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy faults into ``StorageError`` for ``operation``."""

    try:
        yield
    except SQLAlchemyError as error:
        logger.error("Storage failure during %s (task_id=%s): %s", operation, task_id, error)
        raise StorageError(
            f"Storage failure during {operation}: {error}",
            operation=operation,
            task_id=task_id,
        ) from error


class LifecycleEngine:
    """Validates lifecycle requests and applies them through the repository.

    Validation always happens before the repository is touched, so a rejected request
    writes nothing. Domain errors from the repository (``NotFoundError``, ``ConflictError``,
    ``InvalidArgumentError``) propagate unchanged.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    def create_task(self, payload: TaskCreate) -> TaskView:
        name = payload.name.strip()
        if not name:
            raise InvalidArgumentError("Task name must not be empty.")
        task_id = payload.task_id.strip() if payload.task_id is not None else None
        if task_id == "":
            raise InvalidArgumentError("Task id must not be blank.")
        request = TaskCreate(
            name=name,
            task_id=task_id,
            priority=coerce_enum(TaskPriority, payload.priority, label="priority"),
            owner=payload.owner,
            git_branch=payload.git_branch,
        )
        with storage_errors("create_task", task_id):
            task = self.repository.create_task(request)
        logger.info("Task created: task_id=%s name=%r", task.task_id, task.name)
        return task

    def update_status(self, request: UpdateStatusRequest) -> StatusUpdateResult:
        """Move a task to ``request.status``, optionally handing it to a new role."""

        task_id = _require_task_id(request.task_id)
        status = coerce_enum(TaskStatus, request.status, label="status")
        role = (
            coerce_enum(WorkflowRole, request.role, label="role")
            if request.role is not None
            else None
        )
        priority = (
            coerce_enum(TaskPriority, request.priority, label="priority")
            if request.priority is not None
            else None
        )
        if is_terminal(status):
            completion_time = request.completion_time or utc_now()
        elif request.completion_time is not None:
            raise InvalidArgumentError(
                f"completion_time is only allowed with a terminal status, got {status.value!r}.",
            )
        else:
            completion_time = None

        with storage_errors("update_status", task_id):
            result = self.repository.apply_status_update(
                task_id=task_id,
                status=status,
                role=role,
                note=request.note,
                priority=priority,
                owner=request.owner,
                completion_time=completion_time,
            )
        logger.info(
            "Task %s status %s -> %s (role=%s)",
            task_id,
            result.previous_status.value,
            result.task.status.value,
            result.task.current_role.value if result.task.current_role else None,
        )
        return result

    def delegate(self, request: DelegateRequest) -> DelegationResult:
        """Hand a task from one role to another, recording a pending delegation."""

        task_id = _require_task_id(request.task_id)
        from_role = coerce_enum(WorkflowRole, request.from_role, label="from_role")
        to_role = coerce_enum(WorkflowRole, request.to_role, label="to_role")
        if from_role == to_role:
            raise InvalidArgumentError(
                f"Cannot delegate task {task_id} from {from_role.value} to itself.",
            )
        with storage_errors("delegate", task_id):
            result = self.repository.apply_delegation(
                task_id=task_id,
                from_role=from_role,
                to_role=to_role,
                message=request.message,
                message_ref=request.message_ref,
            )
        logger.info(
            "Task %s delegated %s -> %s (delegation_id=%s)",
            task_id,
            from_role.value,
            to_role.value,
            result.delegation.id,
        )
        return result

    def resolve_delegation(
        self,
        delegation_id: int,
        success: bool,
        rejection_reason: str | None = None,
    ) -> DelegationView:
        """Resolve a pending delegation; a failed one counts as a redelegation."""

        if isinstance(delegation_id, bool) or not isinstance(delegation_id, int):
            raise InvalidArgumentError(f"Delegation id must be an integer: {delegation_id!r}")
        if delegation_id <= 0:
            raise InvalidArgumentError(f"Delegation id must be positive: {delegation_id}")
        with storage_errors("resolve_delegation"):
            delegation = self.repository.resolve_delegation(
                delegation_id=delegation_id,
                success=bool(success),
                rejection_reason=rejection_reason if not success else None,
            )
        logger.info(
            "Delegation %s for task %s resolved: success=%s",
            delegation_id,
            delegation.task_id,
            delegation.success,
        )
        return delegation

    def complete_task(self, request: CompleteTaskRequest) -> StatusUpdateResult:
        """Finish the role's part of a task; rejection loops back to ``needs-changes``."""

        task_id = _require_task_id(request.task_id)
        role = coerce_enum(WorkflowRole, request.role, label="role")
        outcome = coerce_enum(CompletionOutcome, request.outcome, label="outcome")
        status = OUTCOME_STATUS[outcome]

        content = f"Task {outcome.value} by {role.value}"
        content += f": {request.notes}" if request.notes else "."
        if request.completion_summary:
            content += f"\n\nSummary: {request.completion_summary}"

        with storage_errors("complete_task", task_id):
            result = self.repository.apply_status_update(
                task_id=task_id,
                status=status,
                note=content,
                completion_time=utc_now() if is_terminal(status) else None,
                comment_author=role.value,
            )
        logger.info("Task %s %s by %s", task_id, outcome.value, role.value)
        return result

    def resume(self, task_id: str) -> StatusUpdateResult:
        """Return a blocked or paused task to ``in-progress``; otherwise a no-op."""

        task_id = _require_task_id(task_id)
        with storage_errors("resume", task_id):
            result = self.repository.apply_status_update(
                task_id=task_id,
                status=TaskStatus.IN_PROGRESS,
                only_from=RESUMABLE_STATUSES,
            )
        if result.applied:
            logger.info("Task %s resumed from %s", task_id, result.previous_status.value)
        return result

    def add_comment(
        self,
        task_id: str,
        author: WorkflowRole | str,
        content: str,
        subtask_id: int | None = None,
    ) -> CommentView:
        task_id = _require_task_id(task_id)
        if not content or not content.strip():
            raise InvalidArgumentError("Comment content must not be empty.")
        author_value = author.value if isinstance(author, WorkflowRole) else author
        if author_value != SYSTEM_AUTHOR:
            author_value = coerce_enum(WorkflowRole, author_value, label="author").value
        with storage_errors("add_comment", task_id):
            return self.repository.add_comment(
                task_id=task_id,
                author=author_value,
                content=content,
                subtask_id=subtask_id,
            )

    def get_task(self, task_id: str) -> TaskView:
        task_id = _require_task_id(task_id)
        with storage_errors("get_task", task_id):
            task = self.repository.get_task(task_id=task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def get_task_details(self, task_id: str) -> TaskDetails:
        task_id = _require_task_id(task_id)
        with storage_errors("get_task_details", task_id):
            details = self.repository.get_task_details(task_id=task_id)
        if details is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return details


def _require_task_id(task_id: str) -> str:
    if not isinstance(task_id, str) or not task_id.strip():
        raise InvalidArgumentError("Task id must be a non-empty string.")
    return task_id.strip()
