from __future__ import annotations

import allure
import pytest

from task_relay.errors import InvalidArgumentError, InvalidCommandError, NotFoundError
from task_relay.protocol.interpreter import CommandOutcome
from task_relay.workflow.models import (
    TaskStatus,
    TaskView,
    UpdateStatusRequest,
    WorkflowRole,
)
from task_relay.workflow.services import WorkflowService

pytestmark = [
    allure.epic("Command Protocol"),
    allure.feature("Interpreter"),
]


def _assign(service: WorkflowService, task: TaskView, role: WorkflowRole) -> None:
    service.update_status(UpdateStatusRequest(task.task_id, TaskStatus.IN_PROGRESS, role=role))


def test_status_command_matches_direct_update(service: WorkflowService, task: TaskView) -> None:
    _assign(service, task, WorkflowRole.SENIOR_DEVELOPER)
    service.update_status(UpdateStatusRequest(task.task_id, TaskStatus.BLOCKED))

    result = service.run_command(task.task_id, 'status(INP,"x")')

    assert result.outcome is CommandOutcome.SUCCEEDED
    assert result.verb == "status"
    assert result.expanded == {"status": "in-progress", "note": "x"}
    assert result.payload["previous_status"] == "blocked"
    details = service.get_task_details(task.task_id)
    assert details.task.status is TaskStatus.IN_PROGRESS
    assert details.comments[-1].content == "x"
    assert details.comments[-1].author == "senior-developer"


def test_unknown_verb_echoes_raw_command(service: WorkflowService, task: TaskView) -> None:
    with pytest.raises(InvalidCommandError) as error_info:
        service.run_command(task.task_id, "foo(1,2)")

    assert error_info.value.raw == "foo(1,2)"
    assert "foo(1,2)" in str(error_info.value)


def test_note_uses_current_role_as_author(service: WorkflowService, task: TaskView) -> None:
    _assign(service, task, WorkflowRole.RESEARCHER)

    result = service.run_command(task.task_id, 'note("found two libraries, both MIT")')

    assert result.expanded == {"message": "found two libraries, both MIT", "author": "researcher"}
    comments = service.get_task_details(task.task_id).comments
    assert comments[-1].author == "researcher"
    assert comments[-1].content == "found two libraries, both MIT"


def test_free_text_with_apostrophes_and_brackets(service: WorkflowService, task: TaskView) -> None:
    _assign(service, task, WorkflowRole.SENIOR_DEVELOPER)

    noted = service.run_command(task.task_id, "note([WIP] don't merge yet)")
    status = service.run_command(task.task_id, "status(NRV, it's ready)")

    assert noted.expanded["message"] == "[WIP] don't merge yet"
    assert status.expanded == {"status": "needs-review", "note": "it's ready"}
    details = service.get_task_details(task.task_id)
    assert details.task.status is TaskStatus.NEEDS_REVIEW
    assert [comment.content for comment in details.comments[-2:]] == [
        "[WIP] don't merge yet",
        "it's ready",
    ]


def test_note_and_delegate_require_a_current_role(
    service: WorkflowService,
    task: TaskView,
) -> None:
    with pytest.raises(InvalidArgumentError):
        service.run_command(task.task_id, "note(hello)")
    with pytest.raises(InvalidArgumentError):
        service.run_command(task.task_id, "delegate(AR, plan it)")

    assert service.get_task_details(task.task_id).comments == []


def test_delegate_expands_role_and_document_tokens(
    service: WorkflowService,
    task: TaskView,
) -> None:
    _assign(service, task, WorkflowRole.BOOMERANG)

    result = service.run_command(task.task_id, 'delegate(AR,"design the flow",TD)')

    assert result.expanded == {
        "from_role": "boomerang",
        "to_role": "architect",
        "message": "design the flow",
        "message_ref": "task-description",
    }
    delegation = service.get_task_details(task.task_id).delegations[-1]
    assert delegation.id == result.payload["delegation_id"]
    assert delegation.from_role is WorkflowRole.BOOMERANG
    assert delegation.to_role is WorkflowRole.ARCHITECT
    assert delegation.message_ref == "task-description"


def test_json_object_arguments_use_positional_names(
    service: WorkflowService,
    task: TaskView,
) -> None:
    _assign(service, task, WorkflowRole.BOOMERANG)

    result = service.run_command(
        task.task_id,
        'delegate({"to_role": "RS", "message": "dig"})',
    )

    assert result.expanded["to_role"] == "researcher"
    assert result.expanded["message_ref"] is None


@pytest.mark.parametrize(
    "raw",
    [
        "status(DONE)",
        "status()",
        "delegate(XX, msg)",
        "delegate(AR)",
        "delegate(AR, msg, NOPE)",
        "context(,EVERYTHING)",
        'status({"state": "INP"})',
        "note(a, b)",
        "status([1])",
    ],
)
def test_invalid_arguments_raise_invalid_command(
    service: WorkflowService,
    task: TaskView,
    raw: str,
) -> None:
    _assign(service, task, WorkflowRole.BOOMERANG)

    with pytest.raises(InvalidCommandError) as error_info:
        service.run_command(task.task_id, raw)

    assert error_info.value.raw == raw


def test_context_command_defaults_to_command_task(service: WorkflowService, task: TaskView) -> None:
    result = service.run_command(task.task_id, "context(,STATUS)")

    assert result.outcome is CommandOutcome.SUCCEEDED
    assert result.expanded == {"task_id": task.task_id, "slice": "status", "digest": None}
    assert result.payload["payload"]["status"] == "not-started"

    digest = result.payload["digest"]
    again = service.run_command(task.task_id, f"context({task.task_id},status,{digest})")
    assert again.outcome is CommandOutcome.UNCHANGED


def test_context_command_reports_missing_slices(service: WorkflowService, task: TaskView) -> None:
    missing_document = service.run_command(task.task_id, "context(,RR)")
    missing_task = service.run_command(task.task_id, "context(OTHER,FULL)")

    assert missing_document.outcome is CommandOutcome.NOT_FOUND
    assert missing_document.payload["slice"] == "research-report"
    assert missing_task.outcome is CommandOutcome.NOT_FOUND
    assert missing_task.payload["reason"] == "task not found"


def test_commands_on_missing_task_are_not_found(service: WorkflowService) -> None:
    with pytest.raises(NotFoundError):
        service.run_command("missing", "note(hello)")
