"""Persistent workflow ledger repository."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from task_relay.errors import ConflictError, InvalidArgumentError, NotFoundError
from task_relay.storage.alembic_runner import upgrade_head
from task_relay.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_relay.storage.sqlmodel_models import (
    CommentRow,
    DelegationRecordRow,
    ImplementationPlanRow,
    SubtaskRow,
    TaskDescriptionRow,
    TaskDocumentRow,
    TaskRow,
    WorkflowTransitionRow,
)
from task_relay.workflow.models import (
    ROLELESS_STATUSES,
    SYSTEM_AUTHOR,
    CommentView,
    DelegationResult,
    DelegationView,
    DocumentType,
    ImplementationPlanView,
    ImplementationPlanWrite,
    StatusUpdateResult,
    SubtaskView,
    TaskCreate,
    TaskDescriptionView,
    TaskDescriptionWrite,
    TaskDetails,
    TaskDocumentView,
    TaskDocumentWrite,
    TaskPriority,
    TaskStatus,
    TaskView,
    TransitionView,
    WorkflowRole,
)

logger = logging.getLogger(__name__)


class WorkflowRepository:
    """Task ledger persistence facade backed by SQLModel + SQLite.

    Every logical write runs in one session transaction. Task rows are updated with a
    compare-and-swap on ``version``; a lost race re-reads the row and tries again, so the
    ledger rows written next to an update always describe the committed state.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create a not-started task with no owning role."""

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRow(
                task_id=task_id,
                name=payload.name,
                status=TaskStatus.NOT_STARTED.value,
                current_role=None,
                priority=payload.priority.value,
                owner=payload.owner,
                git_branch=payload.git_branch,
                redelegation_count=0,
                version=1,
                creation_time=now,
                completion_time=None,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ConflictError(f"Task already exists: {task_id}") from error
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def apply_status_update(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status: TaskStatus,
        role: WorkflowRole | None = None,
        note: str | None = None,
        priority: TaskPriority | None = None,
        owner: str | None = None,
        completion_time: datetime | None = None,
        comment_author: str | None = None,
        only_from: frozenset[TaskStatus] | None = None,
    ) -> StatusUpdateResult:
        """Update task fields and write the matching transition/comment atomically.

        ``only_from`` turns the call into a guarded no-op when the stored status is not
        one of the given statuses.
        """

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                row = self._get_task_row(session=session, task_id=task_id)
                previous_status = TaskStatus(row.status)
                if only_from is not None and previous_status not in only_from:
                    return StatusUpdateResult(
                        task=_to_task_view(row),
                        previous_status=previous_status,
                        applied=False,
                    )

                previous_role = _optional_role(row.current_role)
                next_role = role if role is not None else previous_role
                if next_role is None and status not in ROLELESS_STATUSES:
                    raise InvalidArgumentError(
                        f"Task {task_id} has no current role; "
                        f"status {status.value!r} requires an owning role.",
                    )

                values: dict[str, Any] = {
                    "status": status.value,
                    "current_role": next_role.value if next_role is not None else None,
                    "completion_time": (
                        to_db_datetime(completion_time) if completion_time is not None else None
                    ),
                }
                if priority is not None:
                    values["priority"] = priority.value
                if owner is not None:
                    values["owner"] = owner
                if not self._compare_and_swap(session=session, row=row, values=values, now=now):
                    session.rollback()
                    logger.debug("Concurrent update on task %s, retrying status update", task_id)
                    continue

                transition = None
                if next_role is not None and next_role != previous_role:
                    transition = self._add_transition(
                        session=session,
                        task_id=task_id,
                        from_role=previous_role,
                        to_role=next_role,
                        reason=f"status update to {status.value}",
                        now=now,
                    )
                comment = None
                if note:
                    author = comment_author or (
                        next_role.value if next_role is not None else SYSTEM_AUTHOR
                    )
                    comment = self._add_comment_row(
                        session=session,
                        task_id=task_id,
                        author=author,
                        content=note,
                        subtask_id=None,
                        now=now,
                    )
                session.commit()
                session.refresh(row)
                return StatusUpdateResult(
                    task=_to_task_view(row),
                    previous_status=previous_status,
                    transition=_to_transition_view(transition) if transition is not None else None,
                    comment=_to_comment_view(comment) if comment is not None else None,
                )

    def apply_delegation(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        from_role: WorkflowRole,
        to_role: WorkflowRole,
        message: str | None,
        message_ref: str | None,
    ) -> DelegationResult:
        """Hand the task to ``to_role`` and record a pending delegation."""

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                row = self._get_task_row(session=session, task_id=task_id)
                previous_role = _optional_role(row.current_role)
                redelegation_count = row.redelegation_count
                if not self._compare_and_swap(
                    session=session,
                    row=row,
                    values={"current_role": to_role.value},
                    now=now,
                ):
                    session.rollback()
                    logger.debug("Concurrent update on task %s, retrying delegation", task_id)
                    continue

                delegation = DelegationRecordRow(
                    task_id=task_id,
                    from_role=from_role.value,
                    to_role=to_role.value,
                    message_ref=message_ref,
                    delegation_time=now,
                    redelegation_count=redelegation_count,
                )
                session.add(delegation)
                transition = None
                if previous_role != to_role:
                    transition = self._add_transition(
                        session=session,
                        task_id=task_id,
                        from_role=previous_role,
                        to_role=to_role,
                        reason="delegation",
                        now=now,
                    )
                comment = None
                if message:
                    content = f"Delegation from {from_role.value} to {to_role.value}: {message}"
                    if message_ref:
                        content += f" (ref: {message_ref})"
                    comment = self._add_comment_row(
                        session=session,
                        task_id=task_id,
                        author=from_role.value,
                        content=content,
                        subtask_id=None,
                        now=now,
                    )
                session.commit()
                session.refresh(row)
                session.refresh(delegation)
                return DelegationResult(
                    delegation=_to_delegation_view(delegation),
                    task=_to_task_view(row),
                    transition=_to_transition_view(transition) if transition is not None else None,
                    comment=_to_comment_view(comment) if comment is not None else None,
                )

    def resolve_delegation(
        self,
        *,
        delegation_id: int,
        success: bool,
        rejection_reason: str | None,
    ) -> DelegationView:
        """Resolve a pending delegation exactly once."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DelegationRecordRow)
                .where(
                    col(DelegationRecordRow.id) == delegation_id,
                    col(DelegationRecordRow.success).is_(None),
                )
                .values(
                    success=success,
                    completion_time=to_db_datetime(now),
                    rejection_reason=rejection_reason,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise NotFoundError(f"Pending delegation not found: {delegation_id}")

            record = session.exec(
                select(DelegationRecordRow).where(DelegationRecordRow.id == delegation_id),
            ).one()
            if not success:
                session.exec(
                    sa_update(TaskRow)
                    .where(col(TaskRow.task_id) == record.task_id)
                    .values(
                        redelegation_count=col(TaskRow.redelegation_count) + 1,
                        version=col(TaskRow.version) + 1,
                        updated_at=to_db_datetime(now),
                    )
                    .execution_options(synchronize_session=False),
                )
            session.commit()
            session.refresh(record)
            return _to_delegation_view(record)

    def add_comment(
        self,
        *,
        task_id: str,
        author: str,
        content: str,
        subtask_id: int | None = None,
    ) -> CommentView:
        """Append a comment to a task, optionally scoped to one of its subtasks."""

        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            if subtask_id is not None:
                subtask = session.exec(
                    select(SubtaskRow).where(
                        SubtaskRow.id == subtask_id,
                        SubtaskRow.task_id == task_id,
                    ),
                ).one_or_none()
                if subtask is None:
                    raise NotFoundError(f"Subtask {subtask_id} not found for task {task_id}")
            comment = self._add_comment_row(
                session=session,
                task_id=task_id,
                author=author,
                content=content,
                subtask_id=subtask_id,
                now=utc_now(),
            )
            session.commit()
            return _to_comment_view(comment)

    def get_delegation(self, *, delegation_id: int) -> DelegationView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(DelegationRecordRow).where(DelegationRecordRow.id == delegation_id),
            ).one_or_none()
            return _to_delegation_view(row) if row is not None else None

    def list_delegations(
        self,
        *,
        task_id: str,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[DelegationView]:
        with Session(self.engine) as session:
            statement = select(DelegationRecordRow).where(DelegationRecordRow.task_id == task_id)
            if newest_first:
                statement = statement.order_by(
                    col(DelegationRecordRow.delegation_time).desc(),
                    col(DelegationRecordRow.id).desc(),
                )
            else:
                statement = statement.order_by(
                    col(DelegationRecordRow.delegation_time).asc(),
                    col(DelegationRecordRow.id).asc(),
                )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_delegation_view(row) for row in rows]

    def list_transitions(
        self,
        *,
        task_id: str,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[TransitionView]:
        with Session(self.engine) as session:
            statement = select(WorkflowTransitionRow).where(
                WorkflowTransitionRow.task_id == task_id,
            )
            if newest_first:
                statement = statement.order_by(
                    col(WorkflowTransitionRow.timestamp).desc(),
                    col(WorkflowTransitionRow.id).desc(),
                )
            else:
                statement = statement.order_by(
                    col(WorkflowTransitionRow.timestamp).asc(),
                    col(WorkflowTransitionRow.id).asc(),
                )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_transition_view(row) for row in rows]

    def list_comments(
        self,
        *,
        task_id: str,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[CommentView]:
        with Session(self.engine) as session:
            statement = select(CommentRow).where(CommentRow.task_id == task_id)
            if newest_first:
                statement = statement.order_by(
                    col(CommentRow.created_at).desc(),
                    col(CommentRow.id).desc(),
                )
            else:
                statement = statement.order_by(
                    col(CommentRow.created_at).asc(),
                    col(CommentRow.id).asc(),
                )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_comment_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task with its full ledger in replay order."""

        task = self.get_task(task_id=task_id)
        if task is None:
            return None
        return TaskDetails(
            task=task,
            delegations=self.list_delegations(task_id=task_id),
            transitions=self.list_transitions(task_id=task_id),
            comments=self.list_comments(task_id=task_id),
        )

    def save_task_description(
        self,
        *,
        task_id: str,
        payload: TaskDescriptionWrite,
    ) -> TaskDescriptionView:
        """Create or replace the task description."""

        now = utc_now()
        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = session.exec(
                select(TaskDescriptionRow).where(TaskDescriptionRow.task_id == task_id),
            ).one_or_none()
            if row is None:
                row = TaskDescriptionRow(task_id=task_id, description="", created_at=now)
            row.description = payload.description
            row.business_requirements = payload.business_requirements
            row.technical_requirements = payload.technical_requirements
            row.acceptance_criteria_json = json.dumps(
                list(payload.acceptance_criteria),
                ensure_ascii=False,
            )
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_description_view(row)

    def get_task_description(self, *, task_id: str) -> TaskDescriptionView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskDescriptionRow).where(TaskDescriptionRow.task_id == task_id),
            ).one_or_none()
            return _to_description_view(row) if row is not None else None

    def save_implementation_plan(
        self,
        *,
        task_id: str,
        payload: ImplementationPlanWrite,
    ) -> ImplementationPlanView:
        """Store a new plan revision together with its subtasks."""

        now = utc_now()
        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            plan = ImplementationPlanRow(
                task_id=task_id,
                overview=payload.overview,
                approach=payload.approach,
                technical_decisions=payload.technical_decisions,
                files_to_modify_json=json.dumps(list(payload.files_to_modify), ensure_ascii=False),
                created_by=payload.created_by.value,
                created_at=now,
                updated_at=now,
            )
            session.add(plan)
            session.flush()
            for subtask in payload.subtasks:
                session.add(
                    SubtaskRow(
                        task_id=task_id,
                        plan_id=plan.id,
                        name=subtask.name,
                        description=subtask.description,
                        status=subtask.status.value,
                        assigned_to=(
                            subtask.assigned_to.value if subtask.assigned_to is not None else None
                        ),
                        batch_id=subtask.batch_id,
                        batch_title=subtask.batch_title,
                        sequence_number=subtask.sequence_number,
                    ),
                )
            session.commit()
            plan_id = plan.id
        plan_view = self._load_plan(plan_id=plan_id)
        if plan_view is None:  # pragma: no cover - just committed
            raise NotFoundError(f"Implementation plan vanished: {plan_id}")
        return plan_view

    def get_latest_plan(self, *, task_id: str) -> ImplementationPlanView | None:
        with Session(self.engine) as session:
            plan_id = session.exec(
                select(ImplementationPlanRow.id)
                .where(ImplementationPlanRow.task_id == task_id)
                .order_by(
                    col(ImplementationPlanRow.updated_at).desc(),
                    col(ImplementationPlanRow.id).desc(),
                )
                .limit(1),
            ).one_or_none()
        if plan_id is None:
            return None
        return self._load_plan(plan_id=plan_id)

    def add_task_document(self, *, task_id: str, payload: TaskDocumentWrite) -> TaskDocumentView:
        """Record a report reference written by an external collaborator."""

        with Session(self.engine) as session:
            self._get_task_row(session=session, task_id=task_id)
            row = TaskDocumentRow(
                task_id=task_id,
                doc_type=payload.doc_type.value,
                title=payload.title,
                payload_json=json.dumps(payload.payload, ensure_ascii=False, sort_keys=True),
                author=payload.author.value,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_document_view(row)

    def get_latest_document(
        self,
        *,
        task_id: str,
        doc_type: DocumentType,
    ) -> TaskDocumentView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskDocumentRow)
                .where(
                    TaskDocumentRow.task_id == task_id,
                    TaskDocumentRow.doc_type == doc_type.value,
                )
                .order_by(col(TaskDocumentRow.created_at).desc(), col(TaskDocumentRow.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_document_view(row) if row is not None else None

    def _load_plan(self, *, plan_id: int) -> ImplementationPlanView | None:
        with Session(self.engine) as session:
            plan = session.exec(
                select(ImplementationPlanRow).where(ImplementationPlanRow.id == plan_id),
            ).one_or_none()
            if plan is None:
                return None
            subtasks = session.exec(
                select(SubtaskRow)
                .where(SubtaskRow.plan_id == plan_id)
                .order_by(col(SubtaskRow.sequence_number).asc(), col(SubtaskRow.id).asc()),
            ).all()
            return _to_plan_view(plan, subtasks)

    def _get_task_row(self, *, session: Session, task_id: str) -> TaskRow:
        row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
        if row is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return row

    def _compare_and_swap(
        self,
        *,
        session: Session,
        row: TaskRow,
        values: dict[str, Any],
        now: datetime,
    ) -> bool:
        result = session.exec(
            sa_update(TaskRow)
            .where(
                col(TaskRow.task_id) == row.task_id,
                col(TaskRow.version) == row.version,
            )
            .values(
                version=row.version + 1,
                updated_at=to_db_datetime(now),
                **values,
            ),
        )
        return result.rowcount == 1

    def _add_transition(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        from_role: WorkflowRole | None,
        to_role: WorkflowRole,
        reason: str | None,
        now: datetime,
    ) -> WorkflowTransitionRow:
        transition = WorkflowTransitionRow(
            task_id=task_id,
            from_role=from_role.value if from_role is not None else None,
            to_role=to_role.value,
            timestamp=now,
            reason=reason,
        )
        session.add(transition)
        return transition

    def _add_comment_row(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        author: str,
        content: str,
        subtask_id: int | None,
        now: datetime,
    ) -> CommentRow:
        comment = CommentRow(
            task_id=task_id,
            subtask_id=subtask_id,
            author=author,
            content=content,
            created_at=now,
        )
        session.add(comment)
        return comment


def _optional_role(value: str | None) -> WorkflowRole | None:
    return WorkflowRole(value) if value is not None else None


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        name=row.name,
        status=TaskStatus(row.status),
        current_role=_optional_role(row.current_role),
        priority=TaskPriority(row.priority),
        owner=row.owner,
        git_branch=row.git_branch,
        redelegation_count=row.redelegation_count,
        version=row.version,
        creation_time=to_utc_aware_datetime(row.creation_time),
        completion_time=optional_utc(row.completion_time),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_delegation_view(row: DelegationRecordRow) -> DelegationView:
    return DelegationView(
        id=row.id or 0,
        task_id=row.task_id,
        from_role=WorkflowRole(row.from_role),
        to_role=WorkflowRole(row.to_role),
        message_ref=row.message_ref,
        delegation_time=to_utc_aware_datetime(row.delegation_time),
        completion_time=optional_utc(row.completion_time),
        success=row.success,
        rejection_reason=row.rejection_reason,
        redelegation_count=row.redelegation_count,
    )


def _to_transition_view(row: WorkflowTransitionRow) -> TransitionView:
    return TransitionView(
        id=row.id or 0,
        task_id=row.task_id,
        from_role=_optional_role(row.from_role),
        to_role=WorkflowRole(row.to_role),
        timestamp=to_utc_aware_datetime(row.timestamp),
        reason=row.reason,
    )


def _to_comment_view(row: CommentRow) -> CommentView:
    return CommentView(
        id=row.id or 0,
        task_id=row.task_id,
        subtask_id=row.subtask_id,
        author=row.author,
        content=row.content,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_description_view(row: TaskDescriptionRow) -> TaskDescriptionView:
    return TaskDescriptionView(
        task_id=row.task_id,
        description=row.description,
        business_requirements=row.business_requirements,
        technical_requirements=row.technical_requirements,
        acceptance_criteria=_load_json_list(row.acceptance_criteria_json),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_plan_view(
    plan: ImplementationPlanRow,
    subtasks: list[SubtaskRow] | tuple[SubtaskRow, ...],
) -> ImplementationPlanView:
    return ImplementationPlanView(
        id=plan.id or 0,
        task_id=plan.task_id,
        overview=plan.overview,
        approach=plan.approach,
        technical_decisions=plan.technical_decisions,
        files_to_modify=_load_json_list(plan.files_to_modify_json),
        created_by=WorkflowRole(plan.created_by),
        created_at=to_utc_aware_datetime(plan.created_at),
        updated_at=to_utc_aware_datetime(plan.updated_at),
        subtasks=[
            SubtaskView(
                id=row.id or 0,
                plan_id=row.plan_id,
                name=row.name,
                description=row.description,
                status=TaskStatus(row.status),
                assigned_to=_optional_role(row.assigned_to),
                batch_id=row.batch_id,
                batch_title=row.batch_title,
                sequence_number=row.sequence_number,
                started_at=optional_utc(row.started_at),
                completed_at=optional_utc(row.completed_at),
            )
            for row in subtasks
        ],
    )


def _to_document_view(row: TaskDocumentRow) -> TaskDocumentView:
    payload = json.loads(row.payload_json) if row.payload_json else {}
    return TaskDocumentView(
        id=row.id or 0,
        task_id=row.task_id,
        doc_type=DocumentType(row.doc_type),
        title=row.title,
        author=WorkflowRole(row.author),
        payload=payload if isinstance(payload, dict) else {},
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _load_json_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]
