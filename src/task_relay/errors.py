"""Error taxonomy shared by the lifecycle engine, context service and command protocol."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class WorkflowError(Exception):
    """Base workflow error."""

    message: str
    code: str = "workflow_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class NotFoundError(WorkflowError):
    """Referenced task, delegation or subtask does not exist (or is no longer pending)."""

    code: str = "not_found"


@dataclass(slots=True)
class InvalidArgumentError(WorkflowError):
    """Request rejected by validation before any repository write."""

    code: str = "invalid_argument"


@dataclass(slots=True)
class InvalidCommandError(WorkflowError):
    """Command string could not be parsed or expanded."""

    code: str = "invalid_command"
    raw: str = ""


@dataclass(slots=True)
class ConflictError(WorkflowError):
    """Duplicate unique key on creation."""

    code: str = "conflict"


@dataclass(slots=True)
class StorageError(WorkflowError):
    """Repository fault not otherwise classified. Never retried internally."""

    code: str = "storage_error"
    operation: str = ""
    task_id: str | None = None
