"""Project task state into bounded, canonical context slices."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from typing import Any

from task_relay.config import ContextSettings
from task_relay.context.canonical import compute_digest, to_canonical_value
from task_relay.context.models import DOCUMENT_SLICES, ContextSlice, ContextSnapshot, SliceNotFound
from task_relay.storage.common import utc_now
from task_relay.workflow.models import (
    CommentView,
    DelegationView,
    ImplementationPlanView,
    SubtaskView,
    TaskStatus,
    TaskView,
    TransitionView,
)
from task_relay.workflow.repository import WorkflowRepository

logger = logging.getLogger(__name__)

SliceBuilder = Callable[[TaskView], dict[str, Any] | None]


class ContextSnapshotter:
    """Builds fresh snapshots from repository reads; never caches."""

    def __init__(
        self,
        repository: WorkflowRepository,
        settings: ContextSettings | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or ContextSettings()
        self._builders: dict[ContextSlice, SliceBuilder] = {
            ContextSlice.FULL: self._full,
            ContextSlice.STATUS: _status_payload,
            ContextSlice.DESCRIPTION: self._description,
            ContextSlice.ACCEPTANCE_CRITERIA: self._acceptance_criteria,
            ContextSlice.PLAN: self._plan,
            ContextSlice.SUBTASKS: self._subtasks,
            ContextSlice.COMMENTS: self._comments,
            ContextSlice.DELEGATIONS: self._delegations,
            ContextSlice.WORKFLOW: self._workflow,
        }

    def build(self, task_id: str, slice_: ContextSlice) -> ContextSnapshot | SliceNotFound:
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            return SliceNotFound(task_id=task_id, slice=slice_, reason="task not found")

        if slice_ in DOCUMENT_SLICES:
            payload = self._document(task, slice_)
        else:
            payload = self._builders[slice_](task)
        if payload is None:
            return SliceNotFound(
                task_id=task_id,
                slice=slice_,
                reason=f"no {slice_.value} recorded for task",
            )

        canonical = to_canonical_value(payload)
        snapshot = ContextSnapshot(
            task_id=task_id,
            slice=slice_,
            payload=canonical,
            digest=compute_digest(canonical),
            generated_at=utc_now(),
        )
        logger.debug("Snapshot %s/%s digest=%s", task_id, slice_.value, snapshot.digest)
        return snapshot

    def _full(self, task: TaskView) -> dict[str, Any]:
        description = self.repository.get_task_description(task_id=task.task_id)
        plan = self.repository.get_latest_plan(task_id=task.task_id)
        comments = self.repository.list_comments(
            task_id=task.task_id,
            limit=self.settings.max_comments,
            newest_first=True,
        )
        latest_delegation = self.repository.list_delegations(
            task_id=task.task_id,
            limit=1,
            newest_first=True,
        )
        transitions = self.repository.list_transitions(task_id=task.task_id)
        preview_chars = self.settings.comment_preview_chars
        return {
            "task": _status_payload(task),
            "description": (
                {
                    "description": description.description,
                    "acceptance_criteria_count": len(description.acceptance_criteria),
                }
                if description is not None
                else None
            ),
            "plan": _plan_summary(plan) if plan is not None else None,
            "recent_comments": [
                {
                    "author": comment.author,
                    "preview": _preview(comment.content, preview_chars),
                    "created_at": comment.created_at,
                }
                for comment in comments
            ],
            "latest_delegation": (
                _delegation_payload(latest_delegation[0]) if latest_delegation else None
            ),
            "workflow_path": [transition.to_role for transition in transitions],
        }

    def _description(self, task: TaskView) -> dict[str, Any] | None:
        description = self.repository.get_task_description(task_id=task.task_id)
        if description is None:
            return None
        return {
            "description": description.description,
            "business_requirements": description.business_requirements,
            "technical_requirements": description.technical_requirements,
            "acceptance_criteria": description.acceptance_criteria,
            "updated_at": description.updated_at,
        }

    def _acceptance_criteria(self, task: TaskView) -> dict[str, Any] | None:
        description = self.repository.get_task_description(task_id=task.task_id)
        if description is None:
            return None
        return {"acceptance_criteria": description.acceptance_criteria}

    def _plan(self, task: TaskView) -> dict[str, Any] | None:
        plan = self.repository.get_latest_plan(task_id=task.task_id)
        if plan is None:
            return None
        return {
            "plan_id": plan.id,
            "overview": plan.overview,
            "approach": plan.approach,
            "technical_decisions": plan.technical_decisions,
            "files_to_modify": plan.files_to_modify,
            "created_by": plan.created_by,
            "created_at": plan.created_at,
            "updated_at": plan.updated_at,
            **_subtask_counts(plan.subtasks),
        }

    def _subtasks(self, task: TaskView) -> dict[str, Any]:
        plan = self.repository.get_latest_plan(task_id=task.task_id)
        return {
            "plan_id": plan.id if plan is not None else None,
            "subtasks": [_subtask_payload(item) for item in plan.subtasks] if plan else [],
        }

    def _comments(self, task: TaskView) -> dict[str, Any]:
        comments = self.repository.list_comments(
            task_id=task.task_id,
            limit=self.settings.max_comments,
            newest_first=True,
        )
        return {"comments": [_comment_payload(comment) for comment in comments]}

    def _delegations(self, task: TaskView) -> dict[str, Any]:
        delegations = self.repository.list_delegations(
            task_id=task.task_id,
            limit=self.settings.max_delegations,
            newest_first=True,
        )
        return {
            "redelegation_count": task.redelegation_count,
            "delegations": [_delegation_payload(item) for item in delegations],
        }

    def _workflow(self, task: TaskView) -> dict[str, Any]:
        transitions = self.repository.list_transitions(task_id=task.task_id)
        recent = list(reversed(transitions[-self.settings.max_transitions :]))
        return {
            "current_role": task.current_role,
            "workflow_path": [transition.to_role for transition in transitions],
            "transitions": [_transition_payload(item) for item in recent],
        }

    def _document(self, task: TaskView, slice_: ContextSlice) -> dict[str, Any] | None:
        document = self.repository.get_latest_document(
            task_id=task.task_id,
            doc_type=DOCUMENT_SLICES[slice_],
        )
        if document is None:
            return None
        return {
            "document_id": document.id,
            "doc_type": document.doc_type,
            "title": document.title,
            "author": document.author,
            "payload": document.payload,
            "created_at": document.created_at,
        }


def _status_payload(task: TaskView) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "name": task.name,
        "status": task.status,
        "current_role": task.current_role,
        "priority": task.priority,
        "owner": task.owner,
        "creation_time": task.creation_time,
        "completion_time": task.completion_time,
        "redelegation_count": task.redelegation_count,
        "git_branch": task.git_branch,
    }


def _plan_summary(plan: ImplementationPlanView) -> dict[str, Any]:
    return {"plan_id": plan.id, "overview": plan.overview, **_subtask_counts(plan.subtasks)}


def _subtask_counts(subtasks: list[SubtaskView]) -> dict[str, Any]:
    counts = Counter(item.status.value for item in subtasks)
    return {
        "subtask_total": len(subtasks),
        "subtask_completed": counts.get(TaskStatus.COMPLETED.value, 0),
        "subtask_status_counts": dict(counts),
    }


def _subtask_payload(subtask: SubtaskView) -> dict[str, Any]:
    return {
        "id": subtask.id,
        "name": subtask.name,
        "description": subtask.description,
        "status": subtask.status,
        "assigned_to": subtask.assigned_to,
        "batch_id": subtask.batch_id,
        "batch_title": subtask.batch_title,
        "sequence_number": subtask.sequence_number,
        "started_at": subtask.started_at,
        "completed_at": subtask.completed_at,
    }


def _comment_payload(comment: CommentView) -> dict[str, Any]:
    return {
        "id": comment.id,
        "author": comment.author,
        "content": comment.content,
        "subtask_id": comment.subtask_id,
        "created_at": comment.created_at,
    }


def _delegation_payload(delegation: DelegationView) -> dict[str, Any]:
    return {
        "id": delegation.id,
        "from_role": delegation.from_role,
        "to_role": delegation.to_role,
        "message_ref": delegation.message_ref,
        "delegation_time": delegation.delegation_time,
        "completion_time": delegation.completion_time,
        "success": delegation.success,
        "rejection_reason": delegation.rejection_reason,
        "redelegation_count": delegation.redelegation_count,
    }


def _transition_payload(transition: TransitionView) -> dict[str, Any]:
    return {
        "id": transition.id,
        "from_role": transition.from_role,
        "to_role": transition.to_role,
        "timestamp": transition.timestamp,
        "reason": transition.reason,
    }


def _preview(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit].rstrip() + "..."
