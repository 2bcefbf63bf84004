"""
Module: approval_kernel.selectors.project_selector
Responsibility: Read-only access to projects, their approval chains and
    workflow history.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Chains come back in ``position`` order; history in ``sequence`` order.

Failure modes:
    - Returns None or an empty list when no matching projects exist (never
      raises on absence of data).
"""

from collections.abc import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ActorProfile,
    ApprovalStep,
    Project,
    ProjectStatus,
    WorkflowHistoryEntry,
    current_step,
)
from approval_kernel.models.project import ProjectModel, WorkflowHistoryModel
from approval_kernel.selectors.base import BaseSelector
from approval_kernel.utils.hashing import chain_hash

ActorCheck = Callable[[ActorProfile, ApprovalStep, Project], bool]

_OPEN_STATUSES = tuple(
    status.value
    for status in ProjectStatus
    if status.value.startswith("pending_") or status == ProjectStatus.RESUBMITTED
)


class ProjectSelector(BaseSelector[ProjectModel]):
    """
    Selector for project workflow queries.

    Guarantees:
        - Read-only.
        - Steps, documents and history are eager-loaded (selectin).
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, project_id: UUID) -> Project | None:
        model = self.session.get(ProjectModel, project_id)
        return None if model is None else model.to_dto()

    def list_by_status(self, *statuses: ProjectStatus | str) -> list[Project]:
        """Projects in any of ``statuses`` (all projects when none given)."""
        stmt = select(ProjectModel).order_by(ProjectModel.created_at, ProjectModel.id)
        if statuses:
            stmt = stmt.where(
                ProjectModel.status.in_([ProjectStatus(s).value for s in statuses])
            )
        return [model.to_dto() for model in self.session.scalars(stmt)]

    def pending_for_actor(
        self,
        actor: ActorProfile,
        authorization: ActorCheck,
    ) -> list[Project]:
        """Open projects whose current step ``actor`` may act on.

        Args:
            actor: The approver.
            authorization: ``(actor, step, project) -> bool``; normally
                ``approval_engines.can_act`` bound to the active policy.
        """
        pending = []
        for project in self.list_by_status(*_OPEN_STATUSES):
            step = current_step(project.approval_chain)
            if step is not None and authorization(actor, step, project):
                pending.append(project)
        return pending

    def history(self, project_id: UUID) -> list[WorkflowHistoryEntry]:
        stmt = (
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.project_id == project_id)
            .order_by(WorkflowHistoryModel.sequence)
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def verify_history_chain(self, project_id: UUID) -> list[str]:
        """Check the stored history hash chain.

        Returns:
            Descriptions of broken links or altered rows; empty when intact.
        """
        stmt = (
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.project_id == project_id)
            .order_by(WorkflowHistoryModel.sequence)
        )
        problems: list[str] = []
        prev_hash: str | None = None
        for expected_sequence, row in enumerate(self.session.scalars(stmt)):
            if row.sequence != expected_sequence:
                problems.append(
                    f"sequence gap: expected {expected_sequence}, found {row.sequence}"
                )
            if row.prev_hash != prev_hash:
                problems.append(f"entry {row.sequence}: prev_hash does not link")
            if chain_hash(row.prev_hash, row.hash_input()) != row.entry_hash:
                problems.append(f"entry {row.sequence}: entry_hash mismatch")
            prev_hash = row.entry_hash
        return problems
