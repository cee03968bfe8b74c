"""Controllers for workflow CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from task_relay.config import Settings
from task_relay.context.models import ContextDiff, DiffKind, SliceNotFound
from task_relay.errors import InvalidArgumentError
from task_relay.protocol.tokens import (
    DOCUMENT_TOKENS,
    ROLE_TOKENS,
    STATUS_TOKENS,
    TOKEN_TABLES,
    TokenTable,
)
from task_relay.storage.common import from_iso
from task_relay.workflow.models import (
    CompleteTaskRequest,
    DelegateRequest,
    StatusUpdateResult,
    TaskCreate,
    TaskDescriptionWrite,
    TaskView,
    UpdateStatusRequest,
)
from task_relay.workflow.repository import WorkflowRepository
from task_relay.workflow.services import WorkflowService


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task intake."""

    db_path: Path | None
    name: str
    task_id: str | None
    priority: str
    owner: str | None
    git_branch: str | None
    description: str | None
    acceptance_criteria: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskShowCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskStatusCommand:
    """CLI input for a status update. Status and role accept shorthand codes."""

    db_path: Path | None
    task_id: str
    status: str
    role: str | None
    note: str | None
    priority: str | None
    owner: str | None
    completion_time: str | None


@dataclass(slots=True)
class TaskDelegateCommand:
    db_path: Path | None
    task_id: str
    from_role: str
    to_role: str
    message: str | None
    message_ref: str | None


@dataclass(slots=True)
class TaskResolveCommand:
    db_path: Path | None
    delegation_id: int
    success: bool
    reason: str | None


@dataclass(slots=True)
class TaskCompleteCommand:
    db_path: Path | None
    task_id: str
    role: str
    outcome: str
    notes: str | None
    summary: str | None


@dataclass(slots=True)
class TaskResumeCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskNoteCommand:
    db_path: Path | None
    task_id: str
    author: str
    content: str
    subtask_id: int | None


@dataclass(slots=True)
class ContextGetCommand:
    db_path: Path | None
    task_id: str
    slice_token: str


@dataclass(slots=True)
class ContextDiffCommand:
    """CLI input for a context diff against a digest the caller already holds."""

    db_path: Path | None
    task_id: str
    slice_token: str
    digest: str | None


@dataclass(slots=True)
class RunCommand:
    db_path: Path | None
    task_id: str
    command: str


class WorkflowCliController:
    """Coordinates task lifecycle, context and protocol CLI operations."""

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task = service.create_task(
                TaskCreate(
                    name=command.name,
                    task_id=command.task_id,
                    priority=command.priority,
                    owner=command.owner,
                    git_branch=command.git_branch,
                ),
            )
            if command.description:
                service.save_task_description(
                    task.task_id,
                    TaskDescriptionWrite(
                        description=command.description,
                        acceptance_criteria=list(command.acceptance_criteria),
                    ),
                )
        return [
            f"Task created: task_id={task.task_id} status={task.status.value} "
            f"priority={task.priority.value}",
        ]

    def show_task(self, command: TaskShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            details = service.get_task_details(command.task_id)

        lines = _task_lines(details.task)
        path = " > ".join(ROLE_TOKENS.abbreviate(role.value) for role in details.workflow_path)
        lines.append(f"Workflow path: {path or '-'}")
        lines.append(f"Delegations: {len(details.delegations)}")
        for delegation in details.delegations:
            if delegation.pending:
                state = "pending"
            else:
                state = "succeeded" if delegation.success else "failed"
            lines.append(
                f"  #{delegation.id} {delegation.delegation_time.isoformat()} "
                f"{delegation.from_role.value} -> {delegation.to_role.value} {state}"
                + (f" ({delegation.rejection_reason})" if delegation.rejection_reason else ""),
            )
        lines.append(f"Comments: {len(details.comments)}")
        for comment in details.comments:
            lines.append(f"  {comment.created_at.isoformat()} [{comment.author}] {comment.content}")
        return lines

    def update_status(self, command: TaskStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        completion_time = None
        if command.completion_time:
            try:
                completion_time = from_iso(command.completion_time)
            except ValueError as error:
                raise InvalidArgumentError(
                    f"Invalid completion time {command.completion_time!r}; expected ISO 8601.",
                ) from error
        with _service(settings) as service:
            result = service.update_status(
                UpdateStatusRequest(
                    task_id=command.task_id,
                    status=_long_form(STATUS_TOKENS, command.status),
                    role=_long_form(ROLE_TOKENS, command.role) if command.role else None,
                    note=command.note,
                    priority=command.priority,
                    owner=command.owner,
                    completion_time=completion_time,
                ),
            )
        return _status_result_lines(result)

    def delegate(self, command: TaskDelegateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.delegate(
                DelegateRequest(
                    task_id=command.task_id,
                    from_role=_long_form(ROLE_TOKENS, command.from_role),
                    to_role=_long_form(ROLE_TOKENS, command.to_role),
                    message=command.message,
                    message_ref=(
                        _long_form(DOCUMENT_TOKENS, command.message_ref)
                        if command.message_ref
                        else None
                    ),
                ),
            )
        return [
            f"Delegation recorded: delegation_id={result.delegation.id} "
            f"{result.delegation.from_role.value} -> {result.delegation.to_role.value}",
            *_task_lines(result.task)[:3],
        ]

    def resolve_delegation(self, command: TaskResolveCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            delegation = service.resolve_delegation(
                command.delegation_id,
                command.success,
                command.reason,
            )
            task = service.get_task(delegation.task_id)
        return [
            f"Delegation resolved: delegation_id={delegation.id} success={delegation.success}",
            f"Task: {task.task_id} redelegation_count={task.redelegation_count}",
        ]

    def complete_task(self, command: TaskCompleteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.complete_task(
                CompleteTaskRequest(
                    task_id=command.task_id,
                    role=_long_form(ROLE_TOKENS, command.role),
                    outcome=command.outcome,
                    notes=command.notes,
                    completion_summary=command.summary,
                ),
            )
        return _status_result_lines(result)

    def resume(self, command: TaskResumeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.resume(command.task_id)
        if not result.applied:
            return [
                f"Task {result.task.task_id} not resumed: "
                f"status is {result.task.status.value}",
            ]
        return _status_result_lines(result)

    def add_note(self, command: TaskNoteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        author = ROLE_TOKENS.expand(command.author) or command.author
        with _service(settings) as service:
            comment = service.add_comment(
                command.task_id,
                author,
                command.content,
                command.subtask_id,
            )
        return [f"Comment added: comment_id={comment.id} author={comment.author}"]

    def get_context(self, command: ContextGetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            snapshot = service.get_context(
                command.task_id,
                _long_form(DOCUMENT_TOKENS, command.slice_token),
            )
        if isinstance(snapshot, SliceNotFound):
            return [_not_found_line(snapshot)]
        return [
            f"Digest: {snapshot.digest}",
            _pretty_json(snapshot.payload),
        ]

    def diff_context(self, command: ContextDiffCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            diff = service.get_context_diff(
                command.task_id,
                _long_form(DOCUMENT_TOKENS, command.slice_token),
                command.digest,
            )
        if isinstance(diff, SliceNotFound):
            return [_not_found_line(diff)]
        return _diff_lines(diff)

    def run(self, command: RunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.run_command(command.task_id, command.command)
        return [
            f"Command: {result.verb} outcome={result.outcome.value}",
            f"Expanded: {json.dumps(result.expanded, ensure_ascii=False, sort_keys=True)}",
            _pretty_json(result.payload),
        ]

    def tokens(self) -> list[str]:
        lines: list[str] = []
        for table in TOKEN_TABLES:
            lines.append(f"{table.name.capitalize()} tokens:")
            for code, long_form in table.codes.items():
                lines.append(f"  {code:<12} {long_form}")
            for long_form in sorted(table.extra_long_forms):
                lines.append(f"  {'-':<12} {long_form}")
        return lines


@contextmanager
def _service(settings: Settings) -> Iterator[WorkflowService]:
    settings.validate()
    repository = WorkflowRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield WorkflowService(repository=repository, context_settings=settings.context)
    finally:
        repository.close()


def _long_form(table: TokenTable, value: str) -> str:
    # Unknown tokens pass through so the engine reports the allowed values.
    return table.expand(value) or value


def _task_lines(task: TaskView) -> list[str]:
    return [
        f"Task: {task.task_id} ({task.name})",
        f"Status: {task.status.value}",
        f"Role: {task.current_role.value if task.current_role else '-'}",
        f"Priority: {task.priority.value}",
        f"Owner: {task.owner or '-'}",
        f"Redelegations: {task.redelegation_count}",
        f"Created: {task.creation_time.isoformat()}",
        f"Completed: {task.completion_time.isoformat() if task.completion_time else '-'}",
    ]


def _status_result_lines(result: StatusUpdateResult) -> list[str]:
    task = result.task
    lines = [
        f"Task {task.task_id}: {result.previous_status.value} -> {task.status.value} "
        f"role={task.current_role.value if task.current_role else '-'}",
    ]
    if result.transition is not None:
        from_role = result.transition.from_role.value if result.transition.from_role else "-"
        lines.append(f"Transition: {from_role} -> {result.transition.to_role.value}")
    if result.comment is not None:
        lines.append(f"Comment: [{result.comment.author}] {result.comment.content}")
    return lines


def _diff_lines(diff: ContextDiff) -> list[str]:
    lines = [f"Kind: {diff.kind.value}", f"Digest: {diff.digest}"]
    if diff.kind is DiffKind.CHANGED:
        lines.append(f"Base digest: {diff.base_digest or '-'}")
        for change in diff.changes:
            lines.append(
                f"  {change.change.value} {change.name}: "
                + json.dumps(change.to_dict(), ensure_ascii=False, sort_keys=True),
            )
    elif diff.kind is DiffKind.FULL and diff.snapshot is not None:
        lines.append(_pretty_json(diff.snapshot.payload))
    return lines


def _not_found_line(missing: SliceNotFound) -> str:
    return (
        f"Context not found: task_id={missing.task_id} slice={missing.slice.value} "
        f"({missing.reason})"
    )


def _pretty_json(payload: dict[str, object]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
