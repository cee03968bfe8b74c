"""Dispatch compact protocol commands to the lifecycle engine and context service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from task_relay.context.cache import ContextService
from task_relay.context.models import ContextSlice, DiffKind, SliceNotFound
from task_relay.errors import InvalidArgumentError, InvalidCommandError
from task_relay.protocol.parser import ParsedCommand, parse_command
from task_relay.protocol.tokens import DOCUMENT_TOKENS, ROLE_TOKENS, STATUS_TOKENS, TokenTable
from task_relay.workflow.lifecycle import LifecycleEngine
from task_relay.workflow.models import (
    DelegateRequest,
    TaskStatus,
    UpdateStatusRequest,
    WorkflowRole,
)

logger = logging.getLogger(__name__)


class CommandOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    NOT_FOUND = "not_found"
    UNCHANGED = "unchanged"


@dataclass(slots=True)
class CommandResult:
    """Outcome of one interpreted command. Hard failures are raised, never returned."""

    verb: str
    raw: str
    expanded: dict[str, Any]
    outcome: CommandOutcome
    payload: dict[str, Any] = field(default_factory=dict)


# Positional argument names per verb; the same names are accepted as JSON-object keys.
VERB_ARGUMENTS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "note": (("message",), ()),
    "status": (("status",), ("note",)),
    "delegate": (("to_role", "message"), ("message_ref",)),
    "context": (("task_id", "slice"), ("digest",)),
}

Handler = Callable[[str, dict[str, str | None], ParsedCommand], CommandResult]


class CommandInterpreter:
    """Runs ``verb(args)`` commands on behalf of one task."""

    def __init__(self, *, engine: LifecycleEngine, context: ContextService) -> None:
        self.engine = engine
        self.context = context
        self._handlers: dict[str, Handler] = {
            "note": self._note,
            "status": self._status,
            "delegate": self._delegate,
            "context": self._context,
        }

    def run(self, task_id: str, raw: str) -> CommandResult:
        parsed = parse_command(raw)
        handler = self._handlers.get(parsed.verb)
        if handler is None:
            raise InvalidCommandError(f"Unknown command verb {parsed.verb!r} in {raw!r}", raw=raw)
        arguments = _bind_arguments(parsed)
        result = handler(task_id, arguments, parsed)
        logger.info("Command %r on task %s: %s", raw, task_id, result.outcome.value)
        return result

    def _note(
        self,
        task_id: str,
        arguments: dict[str, str | None],
        parsed: ParsedCommand,
    ) -> CommandResult:
        message = _required(arguments, "message", parsed)
        author = self._current_role(task_id, action="author a note")
        comment = self.engine.add_comment(task_id, author=author, content=message)
        return CommandResult(
            verb=parsed.verb,
            raw=parsed.raw,
            expanded={"message": message, "author": author.value},
            outcome=CommandOutcome.SUCCEEDED,
            payload={"comment_id": comment.id, "author": comment.author},
        )

    def _status(
        self,
        task_id: str,
        arguments: dict[str, str | None],
        parsed: ParsedCommand,
    ) -> CommandResult:
        status_token = _required(arguments, "status", parsed)
        status = TaskStatus(_expand(STATUS_TOKENS, status_token, parsed))
        note = arguments.get("note") or None
        result = self.engine.update_status(
            UpdateStatusRequest(task_id=task_id, status=status, note=note),
        )
        return CommandResult(
            verb=parsed.verb,
            raw=parsed.raw,
            expanded={"status": status.value, "note": note},
            outcome=CommandOutcome.SUCCEEDED,
            payload={
                "task_id": result.task.task_id,
                "previous_status": result.previous_status.value,
                "status": result.task.status.value,
                "current_role": (
                    result.task.current_role.value if result.task.current_role else None
                ),
            },
        )

    def _delegate(
        self,
        task_id: str,
        arguments: dict[str, str | None],
        parsed: ParsedCommand,
    ) -> CommandResult:
        role_token = _required(arguments, "to_role", parsed)
        to_role = WorkflowRole(_expand(ROLE_TOKENS, role_token, parsed))
        message = _required(arguments, "message", parsed)
        ref_token = arguments.get("message_ref")
        message_ref = _expand(DOCUMENT_TOKENS, ref_token, parsed) if ref_token else None
        from_role = self._current_role(task_id, action="delegate")
        result = self.engine.delegate(
            DelegateRequest(
                task_id=task_id,
                from_role=from_role,
                to_role=to_role,
                message=message,
                message_ref=message_ref,
            ),
        )
        return CommandResult(
            verb=parsed.verb,
            raw=parsed.raw,
            expanded={
                "from_role": from_role.value,
                "to_role": to_role.value,
                "message": message,
                "message_ref": message_ref,
            },
            outcome=CommandOutcome.SUCCEEDED,
            payload={
                "delegation_id": result.delegation.id,
                "current_role": to_role.value,
            },
        )

    def _context(
        self,
        task_id: str,
        arguments: dict[str, str | None],
        parsed: ParsedCommand,
    ) -> CommandResult:
        target_task_id = arguments.get("task_id") or task_id
        context_slice = ContextSlice(
            _expand(DOCUMENT_TOKENS, _required(arguments, "slice", parsed), parsed),
        )
        digest = arguments.get("digest") or None
        expanded = {"task_id": target_task_id, "slice": context_slice.value, "digest": digest}

        if digest is None:
            snapshot = self.context.get_context(target_task_id, context_slice)
            if isinstance(snapshot, SliceNotFound):
                return _not_found(parsed, expanded, snapshot)
            return CommandResult(
                verb=parsed.verb,
                raw=parsed.raw,
                expanded=expanded,
                outcome=CommandOutcome.SUCCEEDED,
                payload=snapshot.to_dict(),
            )

        diff = self.context.get_context_diff(target_task_id, context_slice, digest)
        if isinstance(diff, SliceNotFound):
            return _not_found(parsed, expanded, diff)
        return CommandResult(
            verb=parsed.verb,
            raw=parsed.raw,
            expanded=expanded,
            outcome=(
                CommandOutcome.UNCHANGED
                if diff.kind is DiffKind.UNCHANGED
                else CommandOutcome.SUCCEEDED
            ),
            payload=diff.to_dict(),
        )

    def _current_role(self, task_id: str, *, action: str) -> WorkflowRole:
        task = self.engine.get_task(task_id)
        if task.current_role is None:
            raise InvalidArgumentError(f"Task {task_id} has no current role to {action}.")
        return task.current_role


def _bind_arguments(parsed: ParsedCommand) -> dict[str, str | None]:
    required, optional = VERB_ARGUMENTS[parsed.verb]
    names = required + optional
    if parsed.named:
        unknown = sorted(set(parsed.named) - set(names))
        if unknown:
            raise InvalidCommandError(
                f"Unknown argument(s) {', '.join(unknown)} for {parsed.verb}: {parsed.raw!r}",
                raw=parsed.raw,
            )
        values = [parsed.named.get(name) for name in names]
    else:
        if len(parsed.positional) > len(names):
            raise InvalidCommandError(
                f"Too many arguments for {parsed.verb} (max {len(names)}): {parsed.raw!r}",
                raw=parsed.raw,
            )
        values = list(parsed.positional) + [None] * (len(names) - len(parsed.positional))

    bound: dict[str, str | None] = {}
    for name, value in zip(names, values, strict=True):
        if value is not None and not isinstance(value, str):
            raise InvalidCommandError(
                f"Argument {name} of {parsed.verb} must be a string: {parsed.raw!r}",
                raw=parsed.raw,
            )
        bound[name] = value
    return bound


def _required(arguments: dict[str, str | None], name: str, parsed: ParsedCommand) -> str:
    value = arguments.get(name)
    if value is None or not value.strip():
        raise InvalidCommandError(
            f"Missing required argument {name} for {parsed.verb}: {parsed.raw!r}",
            raw=parsed.raw,
        )
    return value


def _expand(table: TokenTable, token: str, parsed: ParsedCommand) -> str:
    expanded = table.expand(token)
    if expanded is None:
        raise InvalidCommandError(
            f"Unknown {table.name} token {token!r} in {parsed.raw!r}",
            raw=parsed.raw,
        )
    return expanded


def _not_found(
    parsed: ParsedCommand,
    expanded: dict[str, Any],
    missing: SliceNotFound,
) -> CommandResult:
    return CommandResult(
        verb=parsed.verb,
        raw=parsed.raw,
        expanded=expanded,
        outcome=CommandOutcome.NOT_FOUND,
        payload=missing.to_dict(),
    )
