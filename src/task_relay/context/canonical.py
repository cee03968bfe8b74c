"""Canonical JSON form and digests for context snapshots.

Canonical form: sorted keys, compact separators, UTF-8 (no ASCII escaping), explicit nulls,
datetimes as UTC ``YYYY-MM-DDTHH:MM:SS.ffffffZ``, enums as their values, tuples as lists.
Two payloads with the same digest are treated as equal; SHA-256 collisions are not handled.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(DATETIME_FORMAT)


def to_canonical_value(value: Any) -> Any:  # noqa: PLR0911
    """Convert ``value`` into plain JSON types in canonical form."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_utc(value)
    if isinstance(value, dict):
        return {str(key): to_canonical_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_canonical_value(item) for item in value]
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_canonical_value(getattr(value, item.name)) for item in fields(value)}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise TypeError(f"Value of type {type(value).__name__} has no canonical JSON form.")


def canonical_json(payload: Any) -> str:
    return json.dumps(
        to_canonical_value(payload),
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )


def compute_digest(payload: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of ``payload``."""

    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
