"""Initial workflow ledger schema: tasks, delegations, transitions, comments, documents."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_role", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("owner", sa.String(), nullable=True),
        sa.Column("git_branch", sa.String(), nullable=True),
        sa.Column("redelegation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("creation_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completion_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_current_role", "tasks", ["current_role"])
    op.create_index("idx_tasks_status_role", "tasks", ["status", "current_role"])

    op.create_table(
        "delegation_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("from_role", sa.String(), nullable=False),
        sa.Column("to_role", sa.String(), nullable=False),
        sa.Column("message_ref", sa.String(), nullable=True),
        sa.Column("delegation_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completion_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("redelegation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delegation_records_task_id", "delegation_records", ["task_id"])
    op.create_index(
        "idx_delegation_records_task_time",
        "delegation_records",
        ["task_id", "delegation_time"],
    )

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("from_role", sa.String(), nullable=True),
        sa.Column("to_role", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workflow_transitions_task_id", "workflow_transitions", ["task_id"])
    op.create_index(
        "idx_workflow_transitions_task_time",
        "workflow_transitions",
        ["task_id", "timestamp"],
    )

    op.create_table(
        "task_descriptions",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("business_requirements", sa.Text(), nullable=False, server_default=""),
        sa.Column("technical_requirements", sa.Text(), nullable=False, server_default=""),
        sa.Column("acceptance_criteria_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
    )

    op.create_table(
        "implementation_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("overview", sa.Text(), nullable=False),
        sa.Column("approach", sa.Text(), nullable=False, server_default=""),
        sa.Column("technical_decisions", sa.Text(), nullable=False, server_default=""),
        sa.Column("files_to_modify_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_implementation_plans_task_id", "implementation_plans", ["task_id"])
    op.create_index(
        "idx_implementation_plans_task_time",
        "implementation_plans",
        ["task_id", "updated_at"],
    )

    op.create_table(
        "subtasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False, server_default="not-started"),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("batch_id", sa.String(), nullable=True),
        sa.Column("batch_title", sa.String(), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["plan_id"], ["implementation_plans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subtasks_task_id", "subtasks", ["task_id"])
    op.create_index("idx_subtasks_plan_sequence", "subtasks", ["plan_id", "sequence_number"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("subtask_id", sa.Integer(), nullable=True),
        sa.Column("author", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subtask_id"], ["subtasks.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comments_task_id", "comments", ["task_id"])
    op.create_index("idx_comments_task_time", "comments", ["task_id", "created_at"])

    op.create_table(
        "task_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("doc_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("author", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_documents_task_id", "task_documents", ["task_id"])
    op.create_index("ix_task_documents_doc_type", "task_documents", ["doc_type"])
    op.create_index(
        "idx_task_documents_task_type_time",
        "task_documents",
        ["task_id", "doc_type", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_task_documents_task_type_time", table_name="task_documents")
    op.drop_index("ix_task_documents_doc_type", table_name="task_documents")
    op.drop_index("ix_task_documents_task_id", table_name="task_documents")
    op.drop_table("task_documents")
    op.drop_index("idx_comments_task_time", table_name="comments")
    op.drop_index("ix_comments_task_id", table_name="comments")
    op.drop_table("comments")
    op.drop_index("idx_subtasks_plan_sequence", table_name="subtasks")
    op.drop_index("ix_subtasks_task_id", table_name="subtasks")
    op.drop_table("subtasks")
    op.drop_index("idx_implementation_plans_task_time", table_name="implementation_plans")
    op.drop_index("ix_implementation_plans_task_id", table_name="implementation_plans")
    op.drop_table("implementation_plans")
    op.drop_table("task_descriptions")
    op.drop_index("idx_workflow_transitions_task_time", table_name="workflow_transitions")
    op.drop_index("ix_workflow_transitions_task_id", table_name="workflow_transitions")
    op.drop_table("workflow_transitions")
    op.drop_index("idx_delegation_records_task_time", table_name="delegation_records")
    op.drop_index("ix_delegation_records_task_id", table_name="delegation_records")
    op.drop_table("delegation_records")
    op.drop_index("idx_tasks_status_role", table_name="tasks")
    op.drop_index("ix_tasks_current_role", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_table("tasks")
