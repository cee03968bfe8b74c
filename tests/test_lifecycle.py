from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest
from sqlalchemy.exc import OperationalError

from task_relay.errors import ConflictError, InvalidArgumentError, NotFoundError, StorageError
from task_relay.workflow.models import (
    CompleteTaskRequest,
    CompletionOutcome,
    DelegateRequest,
    TaskCreate,
    TaskStatus,
    TaskView,
    UpdateStatusRequest,
    WorkflowRole,
    is_terminal,
)
from task_relay.workflow.services import WorkflowService

pytestmark = [
    allure.epic("Workflow Ledger"),
    allure.feature("Lifecycle Engine"),
]


def _start(service: WorkflowService, task_id: str, role: WorkflowRole) -> None:
    service.update_status(
        UpdateStatusRequest(task_id=task_id, status=TaskStatus.IN_PROGRESS, role=role),
    )


def test_delegate_boomerang_to_architect(service: WorkflowService, task: TaskView) -> None:
    _start(service, task.task_id, WorkflowRole.BOOMERANG)

    result = service.delegate(
        DelegateRequest(
            task_id=task.task_id,
            from_role=WorkflowRole.BOOMERANG,
            to_role=WorkflowRole.ARCHITECT,
            message="design the auth flow",
            message_ref="task-description",
        ),
    )

    assert result.task.current_role is WorkflowRole.ARCHITECT
    assert result.task.status is TaskStatus.IN_PROGRESS
    assert result.delegation.pending
    assert result.delegation.redelegation_count == 0
    assert result.delegation.message_ref == "task-description"
    assert result.transition is not None
    assert result.transition.from_role is WorkflowRole.BOOMERANG
    assert result.transition.to_role is WorkflowRole.ARCHITECT
    assert result.transition.reason == "delegation"
    assert result.comment is not None
    assert result.comment.author == "boomerang"
    assert result.comment.content.startswith("Delegation from boomerang to architect:")

    details = service.get_task_details(task.task_id)
    assert len(details.delegations) == 1
    assert details.workflow_path == [WorkflowRole.BOOMERANG, WorkflowRole.ARCHITECT]


def test_review_hand_off_records_transition(service: WorkflowService, task: TaskView) -> None:
    _start(service, task.task_id, WorkflowRole.ARCHITECT)

    result = service.update_status(
        UpdateStatusRequest(
            task_id=task.task_id,
            status=TaskStatus.NEEDS_REVIEW,
            role=WorkflowRole.CODE_REVIEW,
            note="ready for review",
        ),
    )

    assert result.previous_status is TaskStatus.IN_PROGRESS
    assert result.task.status is TaskStatus.NEEDS_REVIEW
    assert result.transition is not None
    assert result.transition.from_role is WorkflowRole.ARCHITECT
    assert result.transition.to_role is WorkflowRole.CODE_REVIEW
    assert result.comment is not None
    assert result.comment.author == "code-review"


def test_status_update_without_role_change_adds_no_transition(
    service: WorkflowService,
    task: TaskView,
) -> None:
    _start(service, task.task_id, WorkflowRole.SENIOR_DEVELOPER)

    result = service.update_status(
        UpdateStatusRequest(task_id=task.task_id, status=TaskStatus.BLOCKED, note="waiting"),
    )

    assert result.transition is None
    assert result.comment is not None
    assert result.comment.author == "senior-developer"
    assert len(service.get_task_details(task.task_id).transitions) == 1


def test_completion_time_tracks_terminal_status(service: WorkflowService, task: TaskView) -> None:
    explicit = datetime(2026, 10, 18, 9, 30, tzinfo=UTC)
    requests = [
        UpdateStatusRequest(task.task_id, TaskStatus.IN_PROGRESS, role=WorkflowRole.BOOMERANG),
        UpdateStatusRequest(task.task_id, TaskStatus.COMPLETED),
        UpdateStatusRequest(task.task_id, TaskStatus.NEEDS_CHANGES),
        UpdateStatusRequest(task.task_id, TaskStatus.CANCELLED, completion_time=explicit),
    ]

    for request in requests:
        updated = service.update_status(request).task
        assert (updated.completion_time is not None) == is_terminal(updated.status)

    assert service.get_task(task.task_id).completion_time == explicit


def test_completion_time_with_open_status_is_rejected(
    service: WorkflowService,
    task: TaskView,
) -> None:
    with pytest.raises(InvalidArgumentError):
        service.update_status(
            UpdateStatusRequest(
                task.task_id,
                TaskStatus.IN_PROGRESS,
                role=WorkflowRole.BOOMERANG,
                completion_time=datetime(2026, 10, 18, tzinfo=UTC),
            ),
        )

    assert service.get_task(task.task_id).version == task.version


def test_role_invariant_violation_writes_nothing(service: WorkflowService, task: TaskView) -> None:
    with pytest.raises(InvalidArgumentError):
        service.update_status(
            UpdateStatusRequest(task.task_id, TaskStatus.IN_PROGRESS, note="no owner"),
        )

    details = service.get_task_details(task.task_id)
    assert details.task.status is TaskStatus.NOT_STARTED
    assert details.comments == []


def test_self_delegation_is_rejected(service: WorkflowService, task: TaskView) -> None:
    with pytest.raises(InvalidArgumentError):
        service.delegate(
            DelegateRequest(
                task_id=task.task_id,
                from_role=WorkflowRole.ARCHITECT,
                to_role=WorkflowRole.ARCHITECT,
            ),
        )

    assert service.get_task_details(task.task_id).delegations == []


def test_invalid_enum_values_are_invalid_arguments(
    service: WorkflowService,
    task: TaskView,
) -> None:
    with pytest.raises(InvalidArgumentError, match="Invalid status"):
        service.update_status(
            UpdateStatusRequest(task.task_id, "finished"),  # type: ignore[arg-type]
        )
    with pytest.raises(InvalidArgumentError, match="Invalid to_role"):
        service.delegate(
            DelegateRequest(
                task.task_id,
                WorkflowRole.BOOMERANG,
                "intern",  # type: ignore[arg-type]
            ),
        )


def test_double_resolve_never_double_increments(service: WorkflowService, task: TaskView) -> None:
    first = service.delegate(
        DelegateRequest(task.task_id, WorkflowRole.BOOMERANG, WorkflowRole.RESEARCHER),
    ).delegation

    service.resolve_delegation(first.id, False, "missing sources")
    with pytest.raises(NotFoundError):
        service.resolve_delegation(first.id, False, "missing sources")

    assert service.get_task(task.task_id).redelegation_count == 1
    second = service.delegate(
        DelegateRequest(task.task_id, WorkflowRole.BOOMERANG, WorkflowRole.RESEARCHER),
    ).delegation
    assert second.redelegation_count == 1

    resolved = service.resolve_delegation(second.id, True, "ignored on success")
    assert resolved.success is True
    assert resolved.rejection_reason is None
    assert service.get_task(task.task_id).redelegation_count == 1


def test_complete_task_marks_completed(service: WorkflowService, task: TaskView) -> None:
    _start(service, task.task_id, WorkflowRole.CODE_REVIEW)

    result = service.complete_task(
        CompleteTaskRequest(
            task_id=task.task_id,
            role=WorkflowRole.CODE_REVIEW,
            outcome=CompletionOutcome.COMPLETED,
            notes="all checks green",
        ),
    )

    assert result.task.status is TaskStatus.COMPLETED
    assert result.task.completion_time is not None
    assert result.comment is not None
    assert result.comment.author == "code-review"
    assert result.comment.content == "Task completed by code-review: all checks green"


def test_rejected_completion_loops_back(service: WorkflowService, task: TaskView) -> None:
    _start(service, task.task_id, WorkflowRole.SENIOR_DEVELOPER)

    result = service.complete_task(
        CompleteTaskRequest(
            task_id=task.task_id,
            role=WorkflowRole.CODE_REVIEW,
            outcome=CompletionOutcome.REJECTED,
            notes="missing tests",
            completion_summary="two findings",
        ),
    )

    assert result.task.status is TaskStatus.NEEDS_CHANGES
    assert result.task.completion_time is None
    assert result.task.current_role is WorkflowRole.SENIOR_DEVELOPER
    assert result.comment is not None
    assert result.comment.author == "code-review"
    assert result.comment.content.startswith("Task rejected by code-review: missing tests")
    assert "Summary: two findings" in result.comment.content


def test_resume_is_idempotent(service: WorkflowService, task: TaskView) -> None:
    _start(service, task.task_id, WorkflowRole.SENIOR_DEVELOPER)
    service.update_status(UpdateStatusRequest(task.task_id, TaskStatus.PAUSED))

    resumed = service.resume(task.task_id)
    again = service.resume(task.task_id)

    assert resumed.applied is True
    assert resumed.previous_status is TaskStatus.PAUSED
    assert resumed.task.status is TaskStatus.IN_PROGRESS
    assert again.applied is False
    assert again.task.status is TaskStatus.IN_PROGRESS
    assert again.task.version == resumed.task.version


def test_missing_task_is_not_found(service: WorkflowService) -> None:
    with pytest.raises(NotFoundError):
        service.update_status(UpdateStatusRequest("missing", TaskStatus.CANCELLED))
    with pytest.raises(NotFoundError):
        service.complete_task(
            CompleteTaskRequest("missing", WorkflowRole.BOOMERANG, CompletionOutcome.COMPLETED),
        )
    with pytest.raises(NotFoundError):
        service.resume("missing")
    with pytest.raises(NotFoundError):
        service.get_task_details("missing")
    with pytest.raises(NotFoundError):
        service.add_comment("missing", "system", "hello")


def test_duplicate_task_id_conflicts(service: WorkflowService, task: TaskView) -> None:
    with pytest.raises(ConflictError):
        service.create_task(TaskCreate(name="Again", task_id=task.task_id))


def test_comment_author_must_be_role_or_system(service: WorkflowService, task: TaskView) -> None:
    assert service.add_comment(task.task_id, "system", "automated").author == "system"
    assert service.add_comment(task.task_id, WorkflowRole.ARCHITECT, "hi").author == "architect"
    with pytest.raises(InvalidArgumentError):
        service.add_comment(task.task_id, "someone", "hello")


def test_storage_faults_surface_as_storage_error(
    service: WorkflowService,
    task: TaskView,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _broken(**_kwargs):
        raise OperationalError("UPDATE tasks", {}, Exception("disk I/O error"))

    monkeypatch.setattr(service.repository, "apply_status_update", _broken)

    with pytest.raises(StorageError) as error_info:
        service.update_status(UpdateStatusRequest(task.task_id, TaskStatus.CANCELLED))

    assert error_info.value.operation == "update_status"
    assert error_info.value.task_id == task.task_id
    assert isinstance(error_info.value.__cause__, OperationalError)
