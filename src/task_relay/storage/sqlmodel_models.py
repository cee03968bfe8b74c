"""SQLModel ORM tables for workflow storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_role", "status", "current_role"),)

    task_id: str = Field(primary_key=True)
    name: str
    status: str = Field(index=True)
    current_role: str | None = Field(default=None, index=True)
    priority: str = Field(default="medium")
    owner: str | None = None
    git_branch: str | None = None
    redelegation_count: int = Field(default=0)
    version: int = Field(default=1)
    creation_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completion_time: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DelegationRecordRow(SQLModel, table=True):
    __tablename__ = "delegation_records"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_delegation_records_task_time", "task_id", "delegation_time"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    from_role: str
    to_role: str
    message_ref: str | None = None
    delegation_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completion_time: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    success: bool | None = None
    rejection_reason: str | None = Field(default=None, sa_column=Column(Text))
    redelegation_count: int = Field(default=0)


class WorkflowTransitionRow(SQLModel, table=True):
    __tablename__ = "workflow_transitions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_workflow_transitions_task_time", "task_id", "timestamp"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    from_role: str | None = None
    to_role: str
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text))


class CommentRow(SQLModel, table=True):
    __tablename__ = "comments"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_comments_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    subtask_id: int | None = Field(
        default=None,
        sa_column=Column(ForeignKey("subtasks.id", ondelete="SET NULL"), nullable=True),
    )
    author: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskDescriptionRow(SQLModel, table=True):
    __tablename__ = "task_descriptions"  # type: ignore[bad-override]

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    description: str = Field(sa_column=Column(Text, nullable=False))
    business_requirements: str = Field(default="", sa_column=Column(Text, nullable=False))
    technical_requirements: str = Field(default="", sa_column=Column(Text, nullable=False))
    acceptance_criteria_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ImplementationPlanRow(SQLModel, table=True):
    __tablename__ = "implementation_plans"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_implementation_plans_task_time", "task_id", "updated_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    overview: str = Field(sa_column=Column(Text, nullable=False))
    approach: str = Field(default="", sa_column=Column(Text, nullable=False))
    technical_decisions: str = Field(default="", sa_column=Column(Text, nullable=False))
    files_to_modify_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    created_by: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SubtaskRow(SQLModel, table=True):
    __tablename__ = "subtasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_subtasks_plan_sequence", "plan_id", "sequence_number"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    plan_id: int = Field(
        sa_column=Column(
            ForeignKey("implementation_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    name: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    status: str = Field(default="not-started")
    assigned_to: str | None = None
    batch_id: str | None = None
    batch_title: str | None = None
    sequence_number: int
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class TaskDocumentRow(SQLModel, table=True):
    __tablename__ = "task_documents"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_task_documents_task_type_time", "task_id", "doc_type", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    doc_type: str = Field(index=True)
    title: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    author: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
