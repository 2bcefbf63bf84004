"""
Module: approval_kernel.models.project
Responsibility: ORM persistence for projects, their approval chains, required
    documents and workflow history.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and utils/ only.

Invariants enforced:
    - Chain order: approval steps are stored with an explicit ``position``;
      UNIQUE(project_id, position) keeps the array order unambiguous.
    - Optimistic concurrency: ``projects.version`` is the mapper's version
      column.  Every UPDATE is conditioned on the version that was read, so
      a lost update surfaces as ``StaleDataError``.
    - Append-only history: workflow history rows cannot be updated or
      deleted through the ORM.  Each row's ``entry_hash`` chains to the
      previous row's hash, so tampering with stored rows is detectable.

Failure modes:
    - IntegrityError on duplicate (project_id, position) or
      (project_id, sequence).
    - ImmutabilityViolationError on history UPDATE/DELETE.
    - StaleDataError when the project row changed since it was read.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.utils.hashing import chain_hash

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalStep,
        Project,
        RequiredDocument,
        WorkflowHistoryEntry,
    )


class ProjectModel(TrackedBase):
    """Persistent project workflow record.

    Contract:
        ``version`` must be set explicitly on every update (the mapper does
        not generate it); ``apply_dto`` copies it from the domain record.
    """

    __tablename__ = "projects"

    __table_args__ = (
        CheckConstraint("budget >= 0", name="ck_projects_budget_non_negative"),
        CheckConstraint(
            "scope IN ('personal', 'departmental', 'external')",
            name="ck_projects_valid_scope",
        ),
        Index("ix_projects_status", "status"),
        Index("ix_projects_creator", "creator_id"),
    )

    name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    budget: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    department_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    department_name: Mapped[str] = mapped_column(
        String(200), default="", nullable=False,
    )
    creator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    requires_budget_allocation: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    compliance_program_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    steps: Mapped[list[ApprovalStepModel]] = relationship(
        "ApprovalStepModel",
        back_populates="project",
        order_by="ApprovalStepModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    documents: Mapped[list[RequiredDocumentModel]] = relationship(
        "RequiredDocumentModel",
        back_populates="project",
        order_by="RequiredDocumentModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history: Mapped[list[WorkflowHistoryModel]] = relationship(
        "WorkflowHistoryModel",
        back_populates="project",
        order_by="WorkflowHistoryModel.sequence",
        cascade="save-update, merge",
        lazy="selectin",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return f"<Project {self.id} {self.scope} status={self.status} v{self.version}>"

    def to_dto(self) -> Project:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            Project as ProjectDTO,
            ProjectScope,
            ProjectStatus,
        )

        return ProjectDTO(
            id=self.id,
            scope=ProjectScope(self.scope),
            budget=self.budget,
            department_id=self.department_id,
            creator_id=self.creator_id,
            status=ProjectStatus(self.status),
            name=self.name,
            department_name=self.department_name,
            requires_budget_allocation=self.requires_budget_allocation,
            required_documents=tuple(d.to_dto() for d in self.documents),
            approval_chain=tuple(s.to_dto() for s in self.steps),
            compliance_program_id=self.compliance_program_id,
            workflow_history=tuple(h.to_dto() for h in self.history),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Project) -> ProjectModel:
        """Create a new ORM model from a domain DTO."""
        model = cls(
            id=dto.id,
            scope=dto.scope.value,
            budget=dto.budget,
            department_id=dto.department_id,
            creator_id=dto.creator_id,
            name=dto.name,
            department_name=dto.department_name,
            requires_budget_allocation=dto.requires_budget_allocation,
        )
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: Project) -> None:
        """Copy the mutable workflow state of ``dto`` onto this row.

        Steps and documents are updated in place by position; history rows
        beyond those already stored are appended with their chain hashes.
        """
        self.status = dto.status.value
        self.compliance_program_id = dto.compliance_program_id
        self.version = dto.version

        _sync_positional(
            self.steps, dto.approval_chain, ApprovalStepModel, self.id,
        )
        _sync_positional(
            self.documents, dto.required_documents, RequiredDocumentModel, self.id,
        )

        prev_hash = self.history[-1].entry_hash if self.history else None
        for sequence in range(len(self.history), len(dto.workflow_history)):
            row = WorkflowHistoryModel.from_dto(
                dto.workflow_history[sequence],
                project_id=self.id,
                sequence=sequence,
                prev_hash=prev_hash,
            )
            self.history.append(row)
            prev_hash = row.entry_hash


def _sync_positional(rows: list, items: tuple, model_cls: Any, project_id: UUID) -> None:
    for position, item in enumerate(items):
        if position < len(rows):
            rows[position].update_from(item)
        else:
            row = model_cls(project_id=project_id, position=position)
            row.update_from(item)
            rows.append(row)
    del rows[len(items):]


class ApprovalStepModel(Base):
    """One stored approval step, ordered by ``position``."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("project_id", "position", name="uq_approval_steps_position"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_approval_steps_valid_status",
        ),
        Index("ix_approval_steps_level_status", "level", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    department_ref: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    project: Mapped[ProjectModel] = relationship("ProjectModel", back_populates="steps")

    def __repr__(self) -> str:
        return f"<ApprovalStep {self.project_id}#{self.position} {self.level}={self.status}>"

    def to_dto(self) -> ApprovalStep:
        from approval_kernel.domain.approval import (
            ApprovalLevel,
            ApprovalStep as ApprovalStepDTO,
            RejectionReason,
            StepStatus,
        )

        return ApprovalStepDTO(
            level=ApprovalLevel(self.level),
            status=StepStatus(self.status),
            approver_id=self.approver_id,
            approved_at=self.approved_at,
            comments=self.comments,
            department_ref=self.department_ref,
            rejection_reason=(
                RejectionReason(self.rejection_reason)
                if self.rejection_reason else None
            ),
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
        )

    def update_from(self, step: ApprovalStep) -> None:
        self.level = step.level.value
        self.status = step.status.value
        self.approver_id = step.approver_id
        self.approved_at = step.approved_at
        self.comments = step.comments
        self.department_ref = step.department_ref
        self.rejection_reason = (
            step.rejection_reason.value if step.rejection_reason else None
        )
        self.rejected_by = step.rejected_by
        self.rejected_at = step.rejected_at


class RequiredDocumentModel(Base):
    """Snapshot of a required document's submission state."""

    __tablename__ = "project_documents"

    __table_args__ = (
        UniqueConstraint("project_id", "position", name="uq_project_documents_position"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    document_type: Mapped[str] = mapped_column(String(100), nullable=False)
    is_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    document_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    project: Mapped[ProjectModel] = relationship("ProjectModel", back_populates="documents")

    def to_dto(self) -> RequiredDocument:
        from approval_kernel.domain.approval import RequiredDocument as DocumentDTO

        return DocumentDTO(
            document_type=self.document_type,
            is_submitted=self.is_submitted,
            document_id=self.document_id,
        )

    def update_from(self, document: RequiredDocument) -> None:
        self.document_type = document.document_type
        self.is_submitted = document.is_submitted
        self.document_id = document.document_id


class WorkflowHistoryModel(Base):
    """Persistent workflow history entry. Append-only, hash-chained."""

    __tablename__ = "workflow_history"

    __table_args__ = (
        UniqueConstraint("project_id", "sequence", name="uq_workflow_history_sequence"),
        Index("ix_workflow_history_action", "action"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    project: Mapped[ProjectModel] = relationship("ProjectModel", back_populates="history")

    def __repr__(self) -> str:
        return f"<WorkflowHistory {self.project_id}#{self.sequence} {self.action}>"

    def hash_input(self) -> dict[str, Any]:
        """The payload ``entry_hash`` is computed over."""
        return history_hash_input(
            self.project_id, self.sequence, self.action,
            self.actor_id, self.timestamp, self.details,
        )

    def to_dto(self) -> WorkflowHistoryEntry:
        from approval_kernel.domain.approval import (
            WorkflowAction,
            WorkflowHistoryEntry as EntryDTO,
        )

        return EntryDTO(
            action=WorkflowAction(self.action),
            actor_id=self.actor_id,
            timestamp=self.timestamp,
            metadata=dict(self.details or {}),
        )

    @classmethod
    def from_dto(
        cls,
        dto: WorkflowHistoryEntry,
        *,
        project_id: UUID,
        sequence: int,
        prev_hash: str | None,
    ) -> WorkflowHistoryModel:
        details = dict(dto.metadata)
        payload = history_hash_input(
            project_id, sequence, dto.action.value,
            dto.actor_id, dto.timestamp, details,
        )
        return cls(
            project_id=project_id,
            sequence=sequence,
            action=dto.action.value,
            actor_id=dto.actor_id,
            timestamp=dto.timestamp,
            details=details,
            prev_hash=prev_hash,
            entry_hash=chain_hash(prev_hash, payload),
        )


def history_hash_input(
    project_id: UUID,
    sequence: int,
    action: str,
    actor_id: UUID,
    timestamp: datetime,
    details: dict[str, Any],
) -> dict[str, Any]:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return {
        "project_id": str(project_id),
        "sequence": sequence,
        "action": action,
        "actor_id": str(actor_id),
        "timestamp": timestamp.astimezone(UTC).isoformat(),
        "metadata": details,
    }


# =============================================================================
# ORM-Level Immutability for Workflow History (Append-Only)
# =============================================================================


@event.listens_for(WorkflowHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to workflow history records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistory",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot modify",
    )


@event.listens_for(WorkflowHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of workflow history records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistory",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot delete",
    )
