"""Operation surface for workflow callers (CLI controllers and embedding applications)."""

from __future__ import annotations

from task_relay.config import ContextSettings
from task_relay.context.cache import ContextCache, ContextService
from task_relay.context.models import ContextDiff, ContextSlice, ContextSnapshot, SliceNotFound
from task_relay.context.snapshot import ContextSnapshotter
from task_relay.errors import InvalidArgumentError
from task_relay.protocol.interpreter import CommandInterpreter, CommandResult
from task_relay.workflow.lifecycle import LifecycleEngine, storage_errors
from task_relay.workflow.models import (
    CommentView,
    CompleteTaskRequest,
    DelegateRequest,
    DelegationResult,
    DelegationView,
    ImplementationPlanView,
    ImplementationPlanWrite,
    StatusUpdateResult,
    TaskCreate,
    TaskDescriptionView,
    TaskDescriptionWrite,
    TaskDetails,
    TaskDocumentView,
    TaskDocumentWrite,
    TaskView,
    UpdateStatusRequest,
    WorkflowRole,
)
from task_relay.workflow.repository import WorkflowRepository


class WorkflowService:
    """Wires lifecycle engine, context service and command interpreter over one repository."""

    def __init__(
        self,
        *,
        repository: WorkflowRepository,
        context_settings: ContextSettings | None = None,
        cache: ContextCache | None = None,
    ) -> None:
        settings = context_settings or ContextSettings()
        self.repository = repository
        self.engine = LifecycleEngine(repository)
        self.context = ContextService(
            snapshotter=ContextSnapshotter(repository, settings=settings),
            cache=cache if cache is not None else ContextCache(settings.cache_max_entries),
        )
        self.interpreter = CommandInterpreter(engine=self.engine, context=self.context)

    def create_task(self, payload: TaskCreate) -> TaskView:
        return self.engine.create_task(payload)

    def update_status(self, request: UpdateStatusRequest) -> StatusUpdateResult:
        return self.engine.update_status(request)

    def delegate(self, request: DelegateRequest) -> DelegationResult:
        return self.engine.delegate(request)

    def resolve_delegation(
        self,
        delegation_id: int,
        success: bool,
        rejection_reason: str | None = None,
    ) -> DelegationView:
        return self.engine.resolve_delegation(delegation_id, success, rejection_reason)

    def complete_task(self, request: CompleteTaskRequest) -> StatusUpdateResult:
        return self.engine.complete_task(request)

    def resume(self, task_id: str) -> StatusUpdateResult:
        return self.engine.resume(task_id)

    def add_comment(
        self,
        task_id: str,
        author: WorkflowRole | str,
        content: str,
        subtask_id: int | None = None,
    ) -> CommentView:
        return self.engine.add_comment(task_id, author, content, subtask_id)

    def get_task(self, task_id: str) -> TaskView:
        return self.engine.get_task(task_id)

    def get_task_details(self, task_id: str) -> TaskDetails:
        return self.engine.get_task_details(task_id)

    def get_context(
        self,
        task_id: str,
        slice_: ContextSlice | str,
    ) -> ContextSnapshot | SliceNotFound:
        return self.context.get_context(task_id, slice_)

    def get_context_diff(
        self,
        task_id: str,
        slice_: ContextSlice | str,
        caller_digest: str | None = None,
    ) -> ContextDiff | SliceNotFound:
        return self.context.get_context_diff(task_id, slice_, caller_digest)

    def run_command(self, task_id: str, raw: str) -> CommandResult:
        """Interpret a compact ``verb(args)`` command for ``task_id``."""

        return self.interpreter.run(task_id, raw)

    def save_task_description(
        self,
        task_id: str,
        payload: TaskDescriptionWrite,
    ) -> TaskDescriptionView:
        if not payload.description.strip():
            raise InvalidArgumentError("Task description must not be empty.")
        with storage_errors("save_task_description", task_id):
            return self.repository.save_task_description(task_id=task_id, payload=payload)

    def save_implementation_plan(
        self,
        task_id: str,
        payload: ImplementationPlanWrite,
    ) -> ImplementationPlanView:
        if not payload.overview.strip():
            raise InvalidArgumentError("Implementation plan overview must not be empty.")
        sequence_numbers = [subtask.sequence_number for subtask in payload.subtasks]
        if len(set(sequence_numbers)) != len(sequence_numbers):
            raise InvalidArgumentError("Subtask sequence numbers must be unique within a plan.")
        with storage_errors("save_implementation_plan", task_id):
            return self.repository.save_implementation_plan(task_id=task_id, payload=payload)

    def add_task_document(self, task_id: str, payload: TaskDocumentWrite) -> TaskDocumentView:
        if not payload.title.strip():
            raise InvalidArgumentError("Document title must not be empty.")
        with storage_errors("add_task_document", task_id):
            return self.repository.add_task_document(task_id=task_id, payload=payload)
