"""Context slice, snapshot and diff models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from task_relay.workflow.models import DocumentType


class ContextSlice(str, Enum):
    """Canonical long-form slice names. Shorthand codes live in the protocol layer."""

    FULL = "full"
    STATUS = "status"
    DESCRIPTION = "task-description"
    ACCEPTANCE_CRITERIA = "acceptance-criteria"
    PLAN = "implementation-plan"
    SUBTASKS = "subtasks-collection"
    COMMENTS = "comments-collection"
    DELEGATIONS = "delegation-history"
    WORKFLOW = "workflow-transitions"
    RESEARCH_REPORT = "research-report"
    CODE_REVIEW = "code-review-report"
    COMPLETION_REPORT = "completion-report"


DOCUMENT_SLICES: dict[ContextSlice, DocumentType] = {
    ContextSlice.RESEARCH_REPORT: DocumentType.RESEARCH_REPORT,
    ContextSlice.CODE_REVIEW: DocumentType.CODE_REVIEW_REPORT,
    ContextSlice.COMPLETION_REPORT: DocumentType.COMPLETION_REPORT,
}


@dataclass(slots=True, frozen=True)
class ContextSnapshot:
    """Canonical projection of one task slice at ``generated_at``."""

    task_id: str
    slice: ContextSlice
    payload: dict[str, Any]
    digest: str
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "slice": self.slice.value,
            "digest": self.digest,
            "payload": self.payload,
        }


@dataclass(slots=True, frozen=True)
class SliceNotFound:
    """Returned instead of a snapshot when the task or the requested document is absent."""

    task_id: str
    slice: ContextSlice
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "slice": self.slice.value, "reason": self.reason}


class DiffKind(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FULL = "full"


class ChangeType(str, Enum):
    MODIFIED = "modified"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(slots=True, frozen=True)
class FieldChange:
    """Change of one top-level snapshot field."""

    name: str
    change: ChangeType
    old: Any = None
    new: Any = None

    def to_dict(self) -> dict[str, Any]:
        if self.change is ChangeType.ADDED:
            return {"change": self.change.value, "new": self.new}
        if self.change is ChangeType.REMOVED:
            return {"change": self.change.value, "old": self.old}
        return {"change": self.change.value, "old": self.old, "new": self.new}


@dataclass(slots=True)
class ContextDiff:
    """Result of comparing a fresh snapshot with what the caller (or cache) last saw.

    ``UNCHANGED`` carries only the digest; ``CHANGED`` carries per-field ``changes`` and the
    ``base_digest`` they were computed against; ``FULL`` carries the whole ``snapshot``.
    """

    task_id: str
    slice: ContextSlice
    kind: DiffKind
    digest: str
    base_digest: str | None = None
    changes: list[FieldChange] = field(default_factory=list)
    snapshot: ContextSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "task_id": self.task_id,
            "slice": self.slice.value,
            "kind": self.kind.value,
            "digest": self.digest,
        }
        if self.kind is DiffKind.CHANGED:
            result["base_digest"] = self.base_digest
            result["changes"] = {change.name: change.to_dict() for change in self.changes}
        elif self.kind is DiffKind.FULL and self.snapshot is not None:
            result["payload"] = self.snapshot.payload
        return result
