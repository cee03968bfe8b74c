"""Parser for compact ``verb(args)`` command strings."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from task_relay.errors import InvalidCommandError

COMMAND_PATTERN = re.compile(r"^([a-zA-Z_]+)\((.*)\)$", re.DOTALL)
JSON_BRACKETS = ("{}", "[]")


@dataclass(slots=True, frozen=True)
class ParsedCommand:
    """Verb plus either positional scalars or named JSON-object arguments."""

    verb: str
    raw: str
    positional: tuple[Any, ...] = ()
    named: dict[str, Any] = field(default_factory=dict)


def parse_command(raw: str) -> ParsedCommand:
    """Split ``raw`` into verb and arguments.

    Arguments are either one bracketed JSON object/array, or comma-separated scalars.
    Double-quoted scalars follow JSON string rules (so quoted commas survive); single quotes
    are stripped; bare scalars are trimmed text and may contain quote characters.
    """

    text = raw.strip()
    match = COMMAND_PATTERN.match(text)
    if match is None:
        raise InvalidCommandError(f"Malformed command, expected verb(args): {raw!r}", raw=raw)
    verb = match.group(1).lower()
    args = match.group(2).strip()

    if args[:1] + args[-1:] in JSON_BRACKETS:
        try:
            decoded = json.loads(args)
        except json.JSONDecodeError as error:
            raise InvalidCommandError(
                f"Malformed JSON arguments in {raw!r}: {error.msg}",
                raw=raw,
            ) from error
        if isinstance(decoded, dict):
            return ParsedCommand(verb=verb, raw=raw, named=decoded)
        return ParsedCommand(verb=verb, raw=raw, positional=tuple(decoded))

    if not args:
        return ParsedCommand(verb=verb, raw=raw)
    return ParsedCommand(
        verb=verb,
        raw=raw,
        positional=tuple(_decode_scalar(piece, raw=raw) for piece in _split_scalars(args, raw=raw)),
    )


def _split_scalars(args: str, *, raw: str) -> list[str]:
    pieces: list[str] = []
    current: list[str] = []
    quote: str | None = None
    escaped = False
    for char in args:
        if quote is not None:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\" and quote == '"':
                escaped = True
            elif char == quote:
                quote = None
            continue
        # A quote only opens a quoted scalar at the start of a piece.
        if char in ('"', "'") and not "".join(current).strip():
            quote = char
            current.append(char)
        elif char == ",":
            pieces.append("".join(current))
            current = []
        else:
            current.append(char)
    if quote is not None:
        raise InvalidCommandError(f"Unterminated quoted argument in {raw!r}", raw=raw)
    pieces.append("".join(current))
    return pieces


def _decode_scalar(piece: str, *, raw: str) -> str:
    value = piece.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':  # noqa: PLR2004
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as error:
            raise InvalidCommandError(
                f"Malformed quoted argument {value} in {raw!r}",
                raw=raw,
            ) from error
        return str(decoded)
    if len(value) >= 2 and value[0] == value[-1] == "'":  # noqa: PLR2004
        return value[1:-1]
    if value.startswith(('"', "'")):
        raise InvalidCommandError(f"Quoted argument must be the whole value: {value}", raw=raw)
    return value
