from __future__ import annotations

from pathlib import Path

import allure
import pytest
from sqlalchemy.exc import IntegrityError

from task_relay.errors import ConflictError, NotFoundError
from task_relay.workflow.models import (
    DocumentType,
    ImplementationPlanWrite,
    SubtaskWrite,
    TaskCreate,
    TaskDescriptionWrite,
    TaskDocumentWrite,
    TaskPriority,
    TaskStatus,
    TaskView,
    WorkflowRole,
)
from task_relay.workflow.repository import WorkflowRepository

pytestmark = [
    allure.epic("Workflow Ledger"),
    allure.feature("Task Repository"),
]


class _RacingRepository(WorkflowRepository):
    """Lets a rival writer commit right before the first compare-and-swap."""

    def __init__(self, db_path: Path, rival: WorkflowRepository, task_id: str) -> None:
        super().__init__(db_path)
        self.rival = rival
        self.task_id = task_id
        self.attempts = 0

    def _compare_and_swap(self, **kwargs):  # type: ignore[override]
        self.attempts += 1
        if self.attempts == 1:
            self.rival.apply_delegation(
                task_id=self.task_id,
                from_role=WorkflowRole.BOOMERANG,
                to_role=WorkflowRole.RESEARCHER,
                message=None,
                message_ref=None,
            )
        return super()._compare_and_swap(**kwargs)


def _create(repository: WorkflowRepository, task_id: str = "TSK-1") -> TaskView:
    return repository.create_task(TaskCreate(name="Write docs", task_id=task_id))


def test_create_task_starts_not_started_without_role(repository: WorkflowRepository) -> None:
    created = repository.create_task(
        TaskCreate(name="Write docs", task_id="TSK-1", priority=TaskPriority.HIGH, owner="ann"),
    )

    assert created.task_id == "TSK-1"
    assert created.status is TaskStatus.NOT_STARTED
    assert created.current_role is None
    assert created.priority is TaskPriority.HIGH
    assert created.version == 1
    assert created.completion_time is None
    assert created.creation_time.tzinfo is not None
    assert repository.get_task(task_id="TSK-1") == created


def test_create_task_generates_id_when_missing(repository: WorkflowRepository) -> None:
    created = repository.create_task(TaskCreate(name="Anonymous"))

    assert created.task_id
    assert repository.get_task(task_id=created.task_id) is not None


def test_create_task_rejects_duplicate_id(repository: WorkflowRepository) -> None:
    _create(repository)

    with pytest.raises(ConflictError):
        _create(repository)


def test_status_update_writes_task_transition_and_comment_together(
    repository: WorkflowRepository,
) -> None:
    _create(repository)

    result = repository.apply_status_update(
        task_id="TSK-1",
        status=TaskStatus.IN_PROGRESS,
        role=WorkflowRole.BOOMERANG,
        note="picked up",
    )

    assert result.previous_status is TaskStatus.NOT_STARTED
    assert result.task.status is TaskStatus.IN_PROGRESS
    assert result.task.current_role is WorkflowRole.BOOMERANG
    assert result.task.version == 2
    assert result.transition is not None
    assert result.transition.from_role is None
    assert result.transition.to_role is WorkflowRole.BOOMERANG
    assert result.comment is not None
    assert result.comment.author == "boomerang"

    details = repository.get_task_details(task_id="TSK-1")
    assert details is not None
    assert [item.to_role for item in details.transitions] == [WorkflowRole.BOOMERANG]
    assert [item.content for item in details.comments] == ["picked up"]


class _BrokenLedgerRepository(WorkflowRepository):
    """Writes a comment pointing at a missing subtask so the ledger flush fails mid-transaction."""

    def _add_comment_row(self, **kwargs):  # type: ignore[override]
        comment = super()._add_comment_row(**{**kwargs, "subtask_id": 9_999})
        kwargs["session"].flush()
        return comment


def _assert_untouched(repository: WorkflowRepository, version: int) -> None:
    details = repository.get_task_details(task_id="TSK-1")
    assert details is not None
    assert details.task.status is TaskStatus.NOT_STARTED
    assert details.task.current_role is None
    assert details.task.version == version
    assert details.transitions == []
    assert details.delegations == []
    assert details.comments == []


def test_failed_ledger_write_rolls_back_status_update(
    repository: WorkflowRepository,
    tmp_path: Path,
) -> None:
    version = _create(repository).version
    broken = _BrokenLedgerRepository(tmp_path / "workflow.db")

    with pytest.raises(IntegrityError):
        broken.apply_status_update(
            task_id="TSK-1",
            status=TaskStatus.IN_PROGRESS,
            role=WorkflowRole.ARCHITECT,
            note="picked up",
        )
    broken.close()

    _assert_untouched(repository, version)


def test_failed_ledger_write_rolls_back_delegation(
    repository: WorkflowRepository,
    tmp_path: Path,
) -> None:
    version = _create(repository).version
    broken = _BrokenLedgerRepository(tmp_path / "workflow.db")

    with pytest.raises(IntegrityError):
        broken.apply_delegation(
            task_id="TSK-1",
            from_role=WorkflowRole.BOOMERANG,
            to_role=WorkflowRole.RESEARCHER,
            message="find prior art",
            message_ref=None,
        )
    broken.close()

    _assert_untouched(repository, version)


def test_status_update_retries_after_losing_version_race(tmp_path: Path) -> None:
    db_path = tmp_path / "race.db"
    rival = WorkflowRepository(db_path)
    rival.init_schema()
    _create(rival)
    rival.apply_status_update(
        task_id="TSK-1",
        status=TaskStatus.IN_PROGRESS,
        role=WorkflowRole.BOOMERANG,
    )
    racing = _RacingRepository(db_path, rival, "TSK-1")
    try:
        result = racing.apply_status_update(
            task_id="TSK-1",
            status=TaskStatus.NEEDS_REVIEW,
            role=WorkflowRole.ARCHITECT,
        )

        assert racing.attempts == 2
        assert result.transition is not None
        assert result.transition.from_role is WorkflowRole.RESEARCHER
        assert result.task.current_role is WorkflowRole.ARCHITECT
        path = [item.to_role for item in racing.list_transitions(task_id="TSK-1")]
        assert path == [WorkflowRole.BOOMERANG, WorkflowRole.RESEARCHER, WorkflowRole.ARCHITECT]
    finally:
        racing.close()
        rival.close()


def test_guarded_status_update_is_noop_for_other_statuses(repository: WorkflowRepository) -> None:
    _create(repository)

    result = repository.apply_status_update(
        task_id="TSK-1",
        status=TaskStatus.IN_PROGRESS,
        only_from=frozenset({TaskStatus.BLOCKED}),
    )

    assert result.applied is False
    assert result.task.status is TaskStatus.NOT_STARTED
    assert result.task.version == 1


def test_resolve_delegation_applies_once(repository: WorkflowRepository) -> None:
    _create(repository)
    delegated = repository.apply_delegation(
        task_id="TSK-1",
        from_role=WorkflowRole.BOOMERANG,
        to_role=WorkflowRole.ARCHITECT,
        message="please plan",
        message_ref="task-description",
    )

    resolved = repository.resolve_delegation(
        delegation_id=delegated.delegation.id,
        success=False,
        rejection_reason="plan missing",
    )
    assert resolved.success is False
    assert resolved.rejection_reason == "plan missing"
    assert resolved.completion_time is not None

    with pytest.raises(NotFoundError):
        repository.resolve_delegation(
            delegation_id=delegated.delegation.id,
            success=False,
            rejection_reason="again",
        )
    task = repository.get_task(task_id="TSK-1")
    assert task is not None
    assert task.redelegation_count == 1


def test_resolve_unknown_delegation_is_not_found(repository: WorkflowRepository) -> None:
    with pytest.raises(NotFoundError):
        repository.resolve_delegation(delegation_id=999, success=True, rejection_reason=None)


def test_comment_on_foreign_subtask_is_rejected(repository: WorkflowRepository) -> None:
    _create(repository, "TSK-1")
    _create(repository, "TSK-2")
    plan = repository.save_implementation_plan(
        task_id="TSK-2",
        payload=ImplementationPlanWrite(
            overview="plan",
            created_by=WorkflowRole.ARCHITECT,
            subtasks=[SubtaskWrite(name="only", sequence_number=1)],
        ),
    )

    with pytest.raises(NotFoundError):
        repository.add_comment(
            task_id="TSK-1",
            author="system",
            content="wrong task",
            subtask_id=plan.subtasks[0].id,
        )
    comment = repository.add_comment(
        task_id="TSK-2",
        author="architect",
        content="scoped",
        subtask_id=plan.subtasks[0].id,
    )
    assert comment.subtask_id == plan.subtasks[0].id


def test_ledger_lists_respect_limit_and_order(repository: WorkflowRepository) -> None:
    _create(repository)
    for index in range(4):
        repository.add_comment(task_id="TSK-1", author="system", content=f"c{index}")

    oldest_first = repository.list_comments(task_id="TSK-1")
    newest_first = repository.list_comments(task_id="TSK-1", limit=2, newest_first=True)

    assert [item.content for item in oldest_first] == ["c0", "c1", "c2", "c3"]
    assert [item.content for item in newest_first] == ["c3", "c2"]


def test_plan_and_documents_return_latest_revision(repository: WorkflowRepository) -> None:
    _create(repository)
    repository.save_task_description(
        task_id="TSK-1",
        payload=TaskDescriptionWrite(description="v1", acceptance_criteria=["a"]),
    )
    description = repository.save_task_description(
        task_id="TSK-1",
        payload=TaskDescriptionWrite(description="v2", acceptance_criteria=["a", "b"]),
    )
    repository.save_implementation_plan(
        task_id="TSK-1",
        payload=ImplementationPlanWrite(overview="first", created_by=WorkflowRole.ARCHITECT),
    )
    repository.save_implementation_plan(
        task_id="TSK-1",
        payload=ImplementationPlanWrite(
            overview="second",
            created_by=WorkflowRole.ARCHITECT,
            files_to_modify=["src/app.py"],
            subtasks=[
                SubtaskWrite(name="b", sequence_number=2),
                SubtaskWrite(name="a", sequence_number=1),
            ],
        ),
    )
    repository.add_task_document(
        task_id="TSK-1",
        payload=TaskDocumentWrite(
            doc_type=DocumentType.RESEARCH_REPORT,
            title="Old findings",
            author=WorkflowRole.RESEARCHER,
        ),
    )
    repository.add_task_document(
        task_id="TSK-1",
        payload=TaskDocumentWrite(
            doc_type=DocumentType.RESEARCH_REPORT,
            title="Findings",
            author=WorkflowRole.RESEARCHER,
            payload={"summary": "use OAuth"},
        ),
    )

    assert description.description == "v2"
    assert description.acceptance_criteria == ["a", "b"]
    stored = repository.get_task_description(task_id="TSK-1")
    assert stored is not None
    assert stored.description == "v2"

    plan = repository.get_latest_plan(task_id="TSK-1")
    assert plan is not None
    assert plan.overview == "second"
    assert plan.files_to_modify == ["src/app.py"]
    assert [item.name for item in plan.subtasks] == ["a", "b"]

    document = repository.get_latest_document(
        task_id="TSK-1",
        doc_type=DocumentType.RESEARCH_REPORT,
    )
    assert document is not None
    assert document.title == "Findings"
    assert document.payload == {"summary": "use OAuth"}
    assert (
        repository.get_latest_document(task_id="TSK-1", doc_type=DocumentType.COMPLETION_REPORT)
        is None
    )
