"""
Approval routing domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the project approval routing engine.  Defines the
step lifecycle state machine, project statuses, the project aggregate and
its approval chain, workflow history records, collaborator records and
protocols, and command results.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Step lifecycle -- ``STEP_TRANSITIONS`` defines the only valid step
  status transitions.  ``approved`` and ``skipped`` have no outgoing edges.
* Current step -- derived, never stored: the first step in array order
  that is not resolved, provided it is ``pending``.  A ``rejected`` step in
  that position halts the chain.
* Chain shape -- ``Project.approval_chain`` never changes length or level
  sequence once built; commands replace individual steps only.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from approval_kernel.exceptions import ApprovalRoutingError


# =========================================================================
# Scopes and levels
# =========================================================================


class ProjectScope(str, Enum):
    """Project scope. Fixed at creation."""

    PERSONAL = "personal"
    DEPARTMENTAL = "departmental"
    EXTERNAL = "external"


class ApprovalLevel(str, Enum):
    """Named approval authorities."""

    HOD = "hod"
    DEPARTMENT = "department"
    FINANCE = "finance"
    EXECUTIVE = "executive"
    LEGAL_COMPLIANCE = "legal_compliance"
    PROJECT_MANAGEMENT = "project_management"
    BUDGET_ALLOCATION = "budget_allocation"


# =========================================================================
# Step lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Approval step states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
    }),
    # Resubmission reopens the rejection point
    StepStatus.REJECTED: frozenset({StepStatus.PENDING}),
    StepStatus.APPROVED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

RESOLVED_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.SKIPPED,
})


# =========================================================================
# Project status
# =========================================================================


class ProjectStatus(str, Enum):
    """Coarse project label mirroring chain progress."""

    PLANNING = "planning"
    PENDING_HOD_APPROVAL = "pending_hod_approval"
    PENDING_DEPARTMENT_APPROVAL = "pending_department_approval"
    PENDING_FINANCE_APPROVAL = "pending_finance_approval"
    PENDING_EXECUTIVE_APPROVAL = "pending_executive_approval"
    PENDING_LEGAL_COMPLIANCE_APPROVAL = "pending_legal_compliance_approval"
    PENDING_PROJECT_MANAGEMENT_APPROVAL = "pending_project_management_approval"
    PENDING_BUDGET_ALLOCATION_APPROVAL = "pending_budget_allocation_approval"
    RESUBMITTED = "resubmitted"
    APPROVED = "approved"
    IMPLEMENTATION = "implementation"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REVISION_REQUIRED = "revision_required"
    CANCELLED = "cancelled"

    @classmethod
    def pending_for(cls, level: ApprovalLevel) -> ProjectStatus:
        """The ``pending_<level>_approval`` status for ``level``."""
        return cls(f"pending_{level.value}_approval")


APPROVED_PROJECT_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.APPROVED,
    ProjectStatus.IMPLEMENTATION,
    ProjectStatus.COMPLETED,
})

HALTED_PROJECT_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.REJECTED,
    ProjectStatus.REVISION_REQUIRED,
})

ARCHIVED_PROJECT_STATUSES: frozenset[ProjectStatus] = frozenset({
    ProjectStatus.COMPLETED,
    ProjectStatus.CANCELLED,
})


class RejectionReason(str, Enum):
    """Revision categories an approver picks when rejecting."""

    BUDGET_ISSUES = "budget_issues"
    SCOPE_CONCERNS = "scope_concerns"
    DOCUMENTATION_INCOMPLETE = "documentation_incomplete"
    RESOURCE_CONSTRAINTS = "resource_constraints"
    TIMELINE_ISSUES = "timeline_issues"
    COMPLIANCE_CONCERNS = "compliance_concerns"
    OTHER = "other"


class WorkflowAction(str, Enum):
    """Workflow history actions."""

    PROJECT_CREATED = "project_created"
    PROJECT_AUTO_APPROVED = "project_auto_approved"
    PROJECT_APPROVED = "project_approved"
    PROJECT_REJECTED = "project_rejected"
    PROJECT_RESUBMITTED = "project_resubmitted"
    PROJECT_CANCELLED = "project_cancelled"
    COMPLIANCE_PROGRAM_ATTACHED = "compliance_program_attached"


# =========================================================================
# Project aggregate
# =========================================================================


@dataclass(frozen=True)
class RequiredDocument:
    """A document the project must have submitted before approval."""

    document_type: str
    is_submitted: bool = False
    document_id: str | None = None


@dataclass(frozen=True)
class ApprovalStep:
    """One step of an approval chain. Immutable; commands replace steps."""

    level: ApprovalLevel
    status: StepStatus = StepStatus.PENDING
    approver_id: UUID | None = None
    approved_at: datetime | None = None
    comments: str = ""
    department_ref: UUID | None = None
    rejection_reason: RejectionReason | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STEP_STATUSES


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """Append-only workflow log record."""

    action: WorkflowAction
    actor_id: UUID
    timestamp: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Project:
    """Workflow view of a project.

    ``status`` is derived from the chain but stored for fast filtering.
    ``version`` increases by one on every successful command.
    """

    id: UUID
    scope: ProjectScope
    budget: Decimal
    department_id: UUID
    creator_id: UUID
    status: ProjectStatus = ProjectStatus.PLANNING
    name: str = ""
    department_name: str = ""
    requires_budget_allocation: bool = False
    required_documents: tuple[RequiredDocument, ...] = ()
    approval_chain: tuple[ApprovalStep, ...] = ()
    compliance_program_id: str | None = None
    workflow_history: tuple[WorkflowHistoryEntry, ...] = ()
    version: int = 1

    @property
    def is_archived(self) -> bool:
        return self.status in ARCHIVED_PROJECT_STATUSES

    @property
    def is_halted(self) -> bool:
        return self.status in HALTED_PROJECT_STATUSES


# =========================================================================
# Current-step accessors
# =========================================================================


def current_step_index(chain: tuple[ApprovalStep, ...]) -> int | None:
    """Index of the current pending step, or None if resolved or halted."""
    for index, step in enumerate(chain):
        if step.is_resolved:
            continue
        if step.status == StepStatus.PENDING:
            return index
        return None
    return None


def current_step(chain: tuple[ApprovalStep, ...]) -> ApprovalStep | None:
    """The current pending step, or None."""
    index = current_step_index(chain)
    return None if index is None else chain[index]


def is_chain_complete(chain: tuple[ApprovalStep, ...]) -> bool:
    """True when every step is approved or skipped (vacuously for [])."""
    return all(step.is_resolved for step in chain)


# =========================================================================
# Collaborator records
# =========================================================================


@dataclass(frozen=True)
class ActorProfile:
    """Identity/role record supplied by the identity collaborator."""

    user_id: UUID
    role_level: int
    department_id: UUID | None = None
    department_name: str = ""


@dataclass(frozen=True)
class ComplianceItem:
    """One regulatory checklist item of a compliance program."""

    status: str
    title: str = ""

    @property
    def is_compliant(self) -> bool:
        return self.status.strip().lower() == "compliant"


@dataclass(frozen=True)
class ComplianceProgram:
    """Externally managed bundle of compliance items."""

    id: str
    name: str
    category: str = ""
    items: tuple[ComplianceItem, ...] = ()


# =========================================================================
# Derived views
# =========================================================================


@dataclass(frozen=True)
class ChainProgress:
    """Approval progress of a chain."""

    completed: int
    total: int
    percentage: int


@dataclass(frozen=True)
class DocumentStatus:
    """Submission progress of required documents."""

    submitted: int
    total: int
    percentage: int
    missing: tuple[str, ...] = ()


# =========================================================================
# Command result
# =========================================================================


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an approval command.

    Expected failures are returned here, never raised past the service.
    """

    success: bool
    project: Project | None = None
    error: ApprovalRoutingError | None = None

    @property
    def error_code(self) -> str | None:
        return None if self.error is None else self.error.code

    @property
    def reason(self) -> str:
        return "" if self.error is None else str(self.error)


# =========================================================================
# Collaborator protocols
# =========================================================================


class DocumentProvider(Protocol):
    """Document collaborator. Read-only input to the approve gate."""

    def get_required_documents(self, project_id: UUID) -> list[RequiredDocument]:
        ...


class ComplianceProgramProvider(Protocol):
    """Compliance-program collaborator."""

    def get_compliant_programs(self) -> list[ComplianceProgram]:
        ...


class IdentityProvider(Protocol):
    """Identity/role collaborator. Returns None for unknown users."""

    def get_actor(self, user_id: UUID) -> ActorProfile | None:
        ...
