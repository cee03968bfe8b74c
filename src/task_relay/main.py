"""CLI entrypoint for task-relay."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from task_relay import __version__
from task_relay.errors import WorkflowError
from task_relay.workflow.controllers import (
    ContextDiffCommand,
    ContextGetCommand,
    RunCommand,
    TaskCompleteCommand,
    TaskCreateCommand,
    TaskDelegateCommand,
    TaskNoteCommand,
    TaskResolveCommand,
    TaskResumeCommand,
    TaskShowCommand,
    TaskStatusCommand,
    WorkflowCliController,
)
from task_relay.workflow.models import CompletionOutcome, TaskPriority

click.rich_click.USE_MARKDOWN = True
WORKFLOW_CONTROLLER = WorkflowCliController()


@click.group()
@click.version_option(version=__version__, prog_name="task-relay")
@click.option(
    "--log-level",
    default=lambda: os.getenv("TASK_RELAY_LOG_LEVEL", "WARNING"),
    show_default="TASK_RELAY_LOG_LEVEL or WARNING",
    help="Logging level for diagnostics on stderr.",
)
def task_relay(log_level: str) -> None:
    """Task workflow state and context synchronization CLI."""

    logging.basicConfig(
        level=log_level.strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@task_relay.group()
def task() -> None:
    """Task lifecycle commands."""


@task.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Task name.")
@click.option("--task-id", default=None, help="External task id. Generated when omitted.")
@click.option(
    "--priority",
    type=click.Choice([item.value for item in TaskPriority]),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
    help="Task priority.",
)
@click.option("--owner", default=None, help="Task owner.")
@click.option("--git-branch", default=None, help="Git branch associated with the task.")
@click.option("--description", default=None, help="Optional task description.")
@click.option(
    "--acceptance-criterion",
    "acceptance_criteria",
    multiple=True,
    help="Acceptance criterion. Can be repeated; used with --description.",
)
def task_create(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    task_id: str | None,
    priority: str,
    owner: str | None,
    git_branch: str | None,
    description: str | None,
    acceptance_criteria: tuple[str, ...],
) -> None:
    """Create a new not-started task."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.create_task(
            TaskCreateCommand(
                db_path=db_path,
                name=name,
                task_id=task_id,
                priority=priority,
                owner=owner,
                git_branch=git_branch,
                description=description,
                acceptance_criteria=acceptance_criteria,
            ),
        )
    _emit_lines(lines)


@task.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def task_show(db_path: Path | None, task_id: str) -> None:
    """Show task state with its delegation, transition and comment ledger."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.show_task(TaskShowCommand(db_path=db_path, task_id=task_id))
    _emit_lines(lines)


@task.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--status", required=True, help="New status, long form or code (e.g. INP).")
@click.option("--role", default=None, help="New owning role, long form or code (e.g. CR).")
@click.option("--note", default=None, help="Comment recorded with the update.")
@click.option(
    "--priority",
    type=click.Choice([item.value for item in TaskPriority]),
    default=None,
    help="New priority.",
)
@click.option("--owner", default=None, help="New owner.")
@click.option(
    "--completion-time",
    default=None,
    help="ISO 8601 completion time; only valid with a terminal status.",
)
def task_status(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    status: str,
    role: str | None,
    note: str | None,
    priority: str | None,
    owner: str | None,
    completion_time: str | None,
) -> None:
    """Update task status, optionally handing it to another role."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.update_status(
            TaskStatusCommand(
                db_path=db_path,
                task_id=task_id,
                status=status,
                role=role,
                note=note,
                priority=priority,
                owner=owner,
                completion_time=completion_time,
            ),
        )
    _emit_lines(lines)


@task.command("delegate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--from-role", required=True, help="Delegating role, long form or code.")
@click.option("--to-role", required=True, help="Receiving role, long form or code.")
@click.option("--message", default=None, help="Hand-off message recorded as a comment.")
@click.option("--message-ref", default=None, help="Document reference, long form or code.")
def task_delegate(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    from_role: str,
    to_role: str,
    message: str | None,
    message_ref: str | None,
) -> None:
    """Delegate a task to another role."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.delegate(
            TaskDelegateCommand(
                db_path=db_path,
                task_id=task_id,
                from_role=from_role,
                to_role=to_role,
                message=message,
                message_ref=message_ref,
            ),
        )
    _emit_lines(lines)


@task.command("resolve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--delegation-id", type=click.IntRange(min=1), required=True, help="Delegation id.")
@click.option(
    "--success/--failure",
    default=True,
    show_default=True,
    help="Whether the delegated work was accepted.",
)
@click.option("--reason", default=None, help="Rejection reason for a failed delegation.")
def task_resolve(
    db_path: Path | None,
    delegation_id: int,
    success: bool,
    reason: str | None,
) -> None:
    """Resolve a pending delegation."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.resolve_delegation(
            TaskResolveCommand(
                db_path=db_path,
                delegation_id=delegation_id,
                success=success,
                reason=reason,
            ),
        )
    _emit_lines(lines)


@task.command("complete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--role", required=True, help="Completing role, long form or code.")
@click.option(
    "--outcome",
    type=click.Choice([item.value for item in CompletionOutcome]),
    default=CompletionOutcome.COMPLETED.value,
    show_default=True,
    help="Completion outcome; rejected loops the task back to needs-changes.",
)
@click.option("--notes", default=None, help="Completion notes.")
@click.option("--summary", default=None, help="Completion summary.")
def task_complete(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    role: str,
    outcome: str,
    notes: str | None,
    summary: str | None,
) -> None:
    """Complete or reject the current role's work on a task."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.complete_task(
            TaskCompleteCommand(
                db_path=db_path,
                task_id=task_id,
                role=role,
                outcome=outcome,
                notes=notes,
                summary=summary,
            ),
        )
    _emit_lines(lines)


@task.command("resume")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def task_resume(db_path: Path | None, task_id: str) -> None:
    """Return a blocked or paused task to in-progress."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.resume(TaskResumeCommand(db_path=db_path, task_id=task_id))
    _emit_lines(lines)


@task.command("note")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--author", required=True, help="Role (long form or code) or 'system'.")
@click.option("--content", required=True, help="Comment text.")
@click.option("--subtask-id", type=click.IntRange(min=1), default=None, help="Subtask id.")
def task_note(
    db_path: Path | None,
    task_id: str,
    author: str,
    content: str,
    subtask_id: int | None,
) -> None:
    """Append a comment to a task."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.add_note(
            TaskNoteCommand(
                db_path=db_path,
                task_id=task_id,
                author=author,
                content=content,
                subtask_id=subtask_id,
            ),
        )
    _emit_lines(lines)


@task_relay.group()
def context() -> None:
    """Context snapshot commands."""


@context.command("get")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--slice", "slice_token", default="FULL", show_default=True, help="Slice or code.")
def context_get(db_path: Path | None, task_id: str, slice_token: str) -> None:
    """Print a fresh context snapshot and its digest."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.get_context(
            ContextGetCommand(db_path=db_path, task_id=task_id, slice_token=slice_token),
        )
    _emit_lines(lines)


@context.command("diff")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--slice", "slice_token", default="FULL", show_default=True, help="Slice or code.")
@click.option("--digest", default=None, help="Digest the caller last saw.")
def context_diff(
    db_path: Path | None,
    task_id: str,
    slice_token: str,
    digest: str | None,
) -> None:
    """Compare the current context with a previously seen digest.

    Each invocation starts with an empty cache, so a stale digest reports every field as added.
    """

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.diff_context(
            ContextDiffCommand(
                db_path=db_path,
                task_id=task_id,
                slice_token=slice_token,
                digest=digest,
            ),
        )
    _emit_lines(lines)


@task_relay.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id the command acts on.")
@click.argument("command")
def run(db_path: Path | None, task_id: str, command: str) -> None:
    """Run a compact protocol command, for example `status(INP,"started")`."""

    with _cli_errors():
        lines = WORKFLOW_CONTROLLER.run(
            RunCommand(db_path=db_path, task_id=task_id, command=command),
        )
    _emit_lines(lines)


@task_relay.command("tokens")
def tokens() -> None:
    """List shorthand codes accepted by the command protocol."""

    _emit_lines(WORKFLOW_CONTROLLER.tokens())


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (WorkflowError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_relay()
