"""Domain models for task lifecycle, delegation ledger and task documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

SYSTEM_AUTHOR = "system"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    NEEDS_REVIEW = "needs-review"
    COMPLETED = "completed"
    NEEDS_CHANGES = "needs-changes"
    BLOCKED = "blocked"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class WorkflowRole(str, Enum):
    """Participants that can own a task."""

    BOOMERANG = "boomerang"
    RESEARCHER = "researcher"
    ARCHITECT = "architect"
    SENIOR_DEVELOPER = "senior-developer"
    CODE_REVIEW = "code-review"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CompletionOutcome(str, Enum):
    """Outcome reported by the role finishing its part of a task."""

    COMPLETED = "completed"
    REJECTED = "rejected"


class DocumentType(str, Enum):
    """Report documents written by external collaborators and exposed as slices."""

    RESEARCH_REPORT = "research-report"
    CODE_REVIEW_REPORT = "code-review-report"
    COMPLETION_REPORT = "completion-report"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
RESUMABLE_STATUSES = frozenset({TaskStatus.BLOCKED, TaskStatus.PAUSED})
ROLELESS_STATUSES = frozenset({TaskStatus.NOT_STARTED}) | TERMINAL_STATUSES

# Rejection loops back into the workflow instead of ending it.
OUTCOME_STATUS = {
    CompletionOutcome.COMPLETED: TaskStatus.COMPLETED,
    CompletionOutcome.REJECTED: TaskStatus.NEEDS_CHANGES,
}


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(slots=True)
class TaskCreate:
    """Input payload for intake of a new task."""

    name: str
    task_id: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    owner: str | None = None
    git_branch: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task state."""

    task_id: str
    name: str
    status: TaskStatus
    current_role: WorkflowRole | None
    priority: TaskPriority
    owner: str | None
    git_branch: str | None
    redelegation_count: int
    version: int
    creation_time: datetime
    completion_time: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class DelegationView:
    """One hand-off attempt between two roles."""

    id: int
    task_id: str
    from_role: WorkflowRole
    to_role: WorkflowRole
    message_ref: str | None
    delegation_time: datetime
    completion_time: datetime | None
    success: bool | None
    rejection_reason: str | None
    redelegation_count: int

    @property
    def pending(self) -> bool:
        return self.success is None


@dataclass(slots=True)
class TransitionView:
    """Immutable role-change ledger entry."""

    id: int
    task_id: str
    from_role: WorkflowRole | None
    to_role: WorkflowRole
    timestamp: datetime
    reason: str | None


@dataclass(slots=True)
class CommentView:
    id: int
    task_id: str
    subtask_id: int | None
    author: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class TaskDetails:
    """Task with its full, chronologically ordered ledger."""

    task: TaskView
    delegations: list[DelegationView]
    transitions: list[TransitionView]
    comments: list[CommentView]

    @property
    def workflow_path(self) -> list[WorkflowRole]:
        return [transition.to_role for transition in self.transitions]


@dataclass(slots=True)
class UpdateStatusRequest:
    """Status update with explicitly optional fields."""

    task_id: str
    status: TaskStatus
    role: WorkflowRole | None = None
    note: str | None = None
    priority: TaskPriority | None = None
    owner: str | None = None
    completion_time: datetime | None = None


@dataclass(slots=True)
class DelegateRequest:
    task_id: str
    from_role: WorkflowRole
    to_role: WorkflowRole
    message: str | None = None
    message_ref: str | None = None


@dataclass(slots=True)
class CompleteTaskRequest:
    task_id: str
    role: WorkflowRole
    outcome: CompletionOutcome
    notes: str | None = None
    completion_summary: str | None = None


@dataclass(slots=True)
class StatusUpdateResult:
    """Updated task plus the ledger rows written in the same transaction."""

    task: TaskView
    previous_status: TaskStatus
    transition: TransitionView | None = None
    comment: CommentView | None = None
    applied: bool = True


@dataclass(slots=True)
class DelegationResult:
    delegation: DelegationView
    task: TaskView
    transition: TransitionView | None = None
    comment: CommentView | None = None


@dataclass(slots=True)
class TaskDescriptionWrite:
    description: str
    business_requirements: str = ""
    technical_requirements: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskDescriptionView:
    task_id: str
    description: str
    business_requirements: str
    technical_requirements: str
    acceptance_criteria: list[str]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class SubtaskWrite:
    name: str
    sequence_number: int
    description: str = ""
    status: TaskStatus = TaskStatus.NOT_STARTED
    assigned_to: WorkflowRole | None = None
    batch_id: str | None = None
    batch_title: str | None = None


@dataclass(slots=True)
class SubtaskView:
    id: int
    plan_id: int
    name: str
    description: str
    status: TaskStatus
    assigned_to: WorkflowRole | None
    batch_id: str | None
    batch_title: str | None
    sequence_number: int
    started_at: datetime | None
    completed_at: datetime | None


@dataclass(slots=True)
class ImplementationPlanWrite:
    overview: str
    created_by: WorkflowRole
    approach: str = ""
    technical_decisions: str = ""
    files_to_modify: list[str] = field(default_factory=list)
    subtasks: list[SubtaskWrite] = field(default_factory=list)


@dataclass(slots=True)
class ImplementationPlanView:
    id: int
    task_id: str
    overview: str
    approach: str
    technical_decisions: str
    files_to_modify: list[str]
    created_by: WorkflowRole
    created_at: datetime
    updated_at: datetime
    subtasks: list[SubtaskView] = field(default_factory=list)


@dataclass(slots=True)
class TaskDocumentWrite:
    """Reference to a report produced outside the engine."""

    doc_type: DocumentType
    title: str
    author: WorkflowRole
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDocumentView:
    id: int
    task_id: str
    doc_type: DocumentType
    title: str
    author: WorkflowRole
    payload: dict[str, Any]
    created_at: datetime
