"""
approval_engines.progress -- Read-only views over a project's chain.

Progress percentages, document completeness, human-readable level labels
and the workflow-status summary.  Pure functions; nothing here changes a
project.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from approval_engines.state_machine import rejection_point_index
from approval_kernel.domain.approval import (
    ApprovalLevel,
    ApprovalStep,
    ChainProgress,
    DocumentStatus,
    Project,
    RequiredDocument,
    StepStatus,
    WorkflowAction,
    current_step_index,
)

LEVEL_LABELS: dict[ApprovalLevel, str] = {
    ApprovalLevel.HOD: "HOD Approval",
    ApprovalLevel.DEPARTMENT: "Department Approval",
    ApprovalLevel.FINANCE: "Finance Approval",
    ApprovalLevel.EXECUTIVE: "Executive Approval",
    ApprovalLevel.LEGAL_COMPLIANCE: "Legal & Compliance Approval",
    ApprovalLevel.PROJECT_MANAGEMENT: "Project Management Approval",
    ApprovalLevel.BUDGET_ALLOCATION: "Budget Allocation Approval",
}

NO_CHAIN_LABEL = "No approval chain"
COMPLETED_LABEL = "All levels completed"


def percentage(part: int, total: int) -> int:
    """Whole-number percentage, rounding half up. ``0/0`` is 0."""
    if total <= 0:
        return 0
    value = Decimal(part) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def progress(chain: Iterable[ApprovalStep]) -> ChainProgress:
    """Resolved (approved or skipped) steps over total steps."""
    steps = tuple(chain)
    completed = sum(1 for step in steps if step.is_resolved)
    return ChainProgress(
        completed=completed,
        total=len(steps),
        percentage=percentage(completed, len(steps)),
    )


def document_status(documents: Iterable[RequiredDocument]) -> DocumentStatus:
    docs = tuple(documents)
    submitted = sum(1 for doc in docs if doc.is_submitted)
    return DocumentStatus(
        submitted=submitted,
        total=len(docs),
        percentage=percentage(submitted, len(docs)),
        missing=tuple(doc.document_type for doc in docs if not doc.is_submitted),
    )


def level_label(level: ApprovalLevel | str) -> str:
    """Display label for a level; unknown names are title-cased."""
    try:
        return LEVEL_LABELS[ApprovalLevel(level)]
    except ValueError:
        return f"{str(level).replace('_', ' ').title()} Approval"


def preserved_approvals(project: Project) -> tuple[str, ...]:
    """Levels preserved by the latest resubmission, if any."""
    for entry in reversed(project.workflow_history):
        if entry.action == WorkflowAction.PROJECT_RESUBMITTED:
            return tuple(entry.metadata.get("preservedApprovals", ()))
    return ()


def _resubmitted_at(project: Project) -> str | None:
    """Rejection point of the latest resubmission, if nothing was rejected since."""
    for entry in reversed(project.workflow_history):
        if entry.action == WorkflowAction.PROJECT_REJECTED:
            return None
        if entry.action == WorkflowAction.PROJECT_RESUBMITTED:
            return entry.metadata.get("rejectionPoint", "")
    return None


def current_level_label(project: Project) -> str:
    """Human-readable description of where the chain stands.

    Examples:
        "No approval chain"
        "All levels completed"
        "Finance Approval (Revision Required)"
        "Finance Approval (Resubmitted) - Preserved: Legal & Compliance Approval"
        "Executive Approval (Resubmitted) - Preserved: Legal & Compliance Approval"
        "Executive Approval"
    """
    chain = project.approval_chain
    if not chain:
        return NO_CHAIN_LABEL

    index = current_step_index(chain)
    if index is None:
        rejected_at = rejection_point_index(project)
        if rejected_at is not None and chain[rejected_at].status == StepStatus.REJECTED:
            return f"{level_label(chain[rejected_at].level)} (Revision Required)"
        return COMPLETED_LABEL

    step = chain[index]
    label = level_label(step.level)
    if _resubmitted_at(project) is not None:
        preserved = preserved_approvals(project)
        if preserved:
            labels = ", ".join(level_label(level) for level in preserved)
            return f"{label} (Resubmitted) - Preserved: {labels}"
        return f"{label} (Resubmitted)"
    return label


def workflow_status(project: Project) -> dict[str, Any]:
    """Summary payload of a project's approval workflow."""
    chain = project.approval_chain
    index = current_step_index(chain)
    chain_progress = progress(chain)
    documents = document_status(project.required_documents)
    return {
        "projectId": str(project.id),
        "status": project.status.value,
        "currentLevel": None if index is None else chain[index].level.value,
        "currentLevelLabel": current_level_label(project),
        "approvalChain": [
            {
                "level": step.level.value,
                "label": level_label(step.level),
                "status": step.status.value,
                "approverId": None if step.approver_id is None else str(step.approver_id),
                "approvedAt": None if step.approved_at is None else step.approved_at.isoformat(),
                "comments": step.comments,
                "rejectionReason": (
                    None if step.rejection_reason is None else step.rejection_reason.value
                ),
            }
            for step in chain
        ],
        "progress": {
            "completed": chain_progress.completed,
            "total": chain_progress.total,
            "percentage": chain_progress.percentage,
        },
        "documents": {
            "submitted": documents.submitted,
            "total": documents.total,
            "percentage": documents.percentage,
            "missing": list(documents.missing),
        },
        "complianceProgramId": project.compliance_program_id,
        "preservedApprovals": list(preserved_approvals(project)),
        "version": project.version,
    }
