"""
approval_engines.state_machine -- Approval commands over a project's chain.

Responsibility:
    The only code that changes an approval chain.  Applies ``approve``,
    ``reject``, ``resubmit`` and ``cancel`` to a ``Project`` record and
    returns the next record.  Also opens a freshly built chain on a new
    project.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time arrives as ``now``;
    collaborator data (documents, compliance programs, actor profile)
    arrives as arguments.  Persistence, locking and collaborator lookups
    belong to ``ProjectApprovalService``.

Invariants enforced:
    - Steps resolve strictly in array order; only the current step changes.
    - Step status changes follow ``STEP_TRANSITIONS``.
    - ``skipped`` is never produced here.
    - ``compliance_program_id`` is set only while ``legal_compliance`` is
      current, and only to a program whose items are all compliant.
    - Rejection keeps approved steps; resubmission reopens only the
      rejection point.
    - ``version`` increases by one per successful command.

Failure modes:
    Every precondition failure raises a ``RoutingError`` or
    ``ProjectError`` subclass.  The input record is never mutated (all
    records are frozen).
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from approval_engines.authorization import (
    DEFAULT_AUTHORIZATION_POLICY,
    AuthorizationPolicy,
    authorization_denial_reason,
)
from approval_engines.chain_builder import ChainBuild, status_for_chain
from approval_kernel.domain.approval import (
    APPROVED_PROJECT_STATUSES,
    HALTED_PROJECT_STATUSES,
    STEP_TRANSITIONS,
    ActorProfile,
    ApprovalLevel,
    ApprovalStep,
    ComplianceProgram,
    Project,
    ProjectScope,
    ProjectStatus,
    RejectionReason,
    RequiredDocument,
    StepStatus,
    WorkflowAction,
    WorkflowHistoryEntry,
    current_step_index,
)
from approval_kernel.exceptions import (
    ComplianceProgramNotFoundError,
    ConcurrentModificationError,
    DocumentsIncompleteError,
    InvalidCancelStateError,
    InvalidResubmitStateError,
    InvalidStepTransitionError,
    MissingComplianceProgramError,
    NonCompliantProgramError,
    NoPendingStepError,
    NotAuthorizedError,
    ProjectArchivedError,
)


# =========================================================================
# Opening a chain
# =========================================================================


def open_project(
    project: Project,
    build: ChainBuild,
    *,
    now: datetime,
) -> Project:
    """Attach a freshly built chain to a new project.

    Records ``project_created`` and, for an empty chain,
    ``project_auto_approved``.
    """
    history = [
        WorkflowHistoryEntry(
            action=WorkflowAction.PROJECT_CREATED,
            actor_id=project.creator_id,
            timestamp=now,
            metadata={
                "band": build.band,
                "levels": [step.level.value for step in build.chain],
                "status": build.initial_status.value,
            },
        ),
    ]
    if build.auto_approved:
        history.append(
            WorkflowHistoryEntry(
                action=WorkflowAction.PROJECT_AUTO_APPROVED,
                actor_id=project.creator_id,
                timestamp=now,
                metadata={"status": build.initial_status.value},
            )
        )
    return replace(
        project,
        approval_chain=build.chain,
        status=build.initial_status,
        workflow_history=tuple(history),
    )


# =========================================================================
# Commands
# =========================================================================


def approve(
    project: Project,
    actor: ActorProfile,
    comments: str = "",
    *,
    now: datetime,
    compliance_program_id: str | None = None,
    compliance_programs: Iterable[ComplianceProgram] = (),
    documents: Iterable[RequiredDocument] | None = None,
    expected_level: ApprovalLevel | None = None,
    policy: AuthorizationPolicy = DEFAULT_AUTHORIZATION_POLICY,
    immediate_execution_scopes: Collection[ProjectScope] = frozenset(),
) -> Project:
    """Approve the current step and advance the chain.

    Preconditions, checked in order:
        1. A current pending step exists (and matches ``expected_level``).
        2. ``actor`` may act on it.
        3. At ``legal_compliance``: a known, fully compliant program.
        4. Every required document is submitted.

    Args:
        documents: Fresh document statuses from the document collaborator;
            defaults to the project's stored ``required_documents``.

    Returns:
        The updated project.  When no steps remain, its status is
        ``approved`` (or ``implementation`` for immediate-execution scopes).
    """
    index, step = _require_current_step(project, expected_level)
    _require_authorized(project, actor, step, policy)

    history = list(project.workflow_history)
    program_id = project.compliance_program_id
    if step.level == ApprovalLevel.LEGAL_COMPLIANCE:
        program = check_compliance_program(
            project, compliance_program_id, compliance_programs,
        )
        program_id = program.id
        history.append(
            WorkflowHistoryEntry(
                action=WorkflowAction.COMPLIANCE_PROGRAM_ATTACHED,
                actor_id=actor.user_id,
                timestamp=now,
                metadata={
                    "complianceProgramId": program.id,
                    "programName": program.name,
                    "category": program.category,
                },
            )
        )

    current_documents = (
        project.required_documents if documents is None else tuple(documents)
    )
    missing = missing_document_types(current_documents)
    if missing:
        raise DocumentsIncompleteError(str(project.id), missing)

    approved = transition_step(
        step,
        StepStatus.APPROVED,
        approver_id=actor.user_id,
        approved_at=now,
        comments=comments,
    )
    chain = _replace_step(project.approval_chain, index, approved)
    status = status_for_chain(chain, project.scope, immediate_execution_scopes)
    next_index = current_step_index(chain)

    history.append(
        WorkflowHistoryEntry(
            action=WorkflowAction.PROJECT_APPROVED,
            actor_id=actor.user_id,
            timestamp=now,
            metadata={
                "level": step.level.value,
                "comments": comments,
                "nextLevel": (
                    None if next_index is None else chain[next_index].level.value
                ),
                "status": status.value,
            },
        )
    )

    return replace(
        project,
        approval_chain=chain,
        status=status,
        compliance_program_id=program_id,
        required_documents=current_documents,
        workflow_history=tuple(history),
        version=project.version + 1,
    )


def reject(
    project: Project,
    actor: ActorProfile,
    reason_category: RejectionReason | str,
    comments: str = "",
    *,
    now: datetime,
    expected_level: ApprovalLevel | None = None,
    policy: AuthorizationPolicy = DEFAULT_AUTHORIZATION_POLICY,
) -> Project:
    """Reject the current step and halt the chain for revision.

    No document or compliance checks apply.  Approved steps stay approved.

    Raises:
        ValueError: ``reason_category`` is not a ``RejectionReason``.
    """
    reason = RejectionReason(reason_category)
    index, step = _require_current_step(project, expected_level)
    _require_authorized(project, actor, step, policy)

    rejected = transition_step(
        step,
        StepStatus.REJECTED,
        rejection_reason=reason,
        rejected_by=actor.user_id,
        rejected_at=now,
        comments=comments,
    )
    chain = _replace_step(project.approval_chain, index, rejected)

    entry = WorkflowHistoryEntry(
        action=WorkflowAction.PROJECT_REJECTED,
        actor_id=actor.user_id,
        timestamp=now,
        metadata={
            "rejectionPoint": step.level.value,
            "rejectionPointIndex": index,
            "reasonCategory": reason.value,
            "comments": comments,
        },
    )
    return replace(
        project,
        approval_chain=chain,
        status=ProjectStatus.REVISION_REQUIRED,
        workflow_history=project.workflow_history + (entry,),
        version=project.version + 1,
    )


def resubmit(
    project: Project,
    actor_id: UUID,
    *,
    now: datetime,
) -> Project:
    """Re-enter the chain at the last rejection point.

    Steps before the rejection point keep their approvals; steps after it
    are untouched.
    """
    if actor_id != project.creator_id:
        raise InvalidResubmitStateError(
            str(project.id),
            project.status.value,
            "only the project creator may resubmit",
        )
    if project.status not in HALTED_PROJECT_STATUSES:
        raise InvalidResubmitStateError(
            str(project.id),
            project.status.value,
            f"project is not awaiting revision (status={project.status.value})",
        )

    index = rejection_point_index(project)
    if index is None:
        raise InvalidResubmitStateError(
            str(project.id),
            project.status.value,
            "no rejected step to reopen",
        )
    step = project.approval_chain[index]
    transition_step(step, StepStatus.PENDING)
    reopened = ApprovalStep(level=step.level, department_ref=step.department_ref)
    chain = _replace_step(project.approval_chain, index, reopened)

    preserved = [s.level.value for s in chain if s.status == StepStatus.APPROVED]
    entry = WorkflowHistoryEntry(
        action=WorkflowAction.PROJECT_RESUBMITTED,
        actor_id=actor_id,
        timestamp=now,
        metadata={
            "rejectionPoint": step.level.value,
            "preservedApprovals": preserved,
        },
    )
    return replace(
        project,
        approval_chain=chain,
        status=ProjectStatus.RESUBMITTED,
        workflow_history=project.workflow_history + (entry,),
        version=project.version + 1,
    )


def cancel(
    project: Project,
    actor: ActorProfile,
    *,
    now: datetime,
    reason: str = "",
    policy: AuthorizationPolicy = DEFAULT_AUTHORIZATION_POLICY,
) -> Project:
    """Withdraw a project that has not yet been approved."""
    _require_not_archived(project)
    if project.status in APPROVED_PROJECT_STATUSES:
        raise InvalidCancelStateError(
            str(project.id),
            project.status.value,
            "approved projects cannot be cancelled",
        )
    if (
        actor.user_id != project.creator_id
        and actor.role_level < policy.top_privilege_level
    ):
        raise InvalidCancelStateError(
            str(project.id),
            project.status.value,
            "only the creator or a top-tier administrator may cancel",
        )

    entry = WorkflowHistoryEntry(
        action=WorkflowAction.PROJECT_CANCELLED,
        actor_id=actor.user_id,
        timestamp=now,
        metadata={"previousStatus": project.status.value, "reason": reason},
    )
    return replace(
        project,
        status=ProjectStatus.CANCELLED,
        workflow_history=project.workflow_history + (entry,),
        version=project.version + 1,
    )


# =========================================================================
# Gates and helpers
# =========================================================================


def check_compliance_program(
    project: Project,
    program_id: str | None,
    programs: Iterable[ComplianceProgram],
) -> ComplianceProgram:
    """Resolve ``program_id`` and require every item to be compliant.

    A program with no items is not accepted.
    """
    if not program_id:
        raise MissingComplianceProgramError(str(project.id))

    program = next((p for p in programs if p.id == program_id), None)
    if program is None:
        raise ComplianceProgramNotFoundError(str(project.id), program_id)

    outstanding = tuple(
        item.status for item in program.items if not item.is_compliant
    )
    if outstanding or not program.items:
        raise NonCompliantProgramError(str(project.id), program.id, outstanding)
    return program


def missing_document_types(
    documents: Iterable[RequiredDocument],
) -> tuple[str, ...]:
    """Types of required documents not yet submitted, in order."""
    return tuple(doc.document_type for doc in documents if not doc.is_submitted)


def rejection_point_index(project: Project) -> int | None:
    """Index of the step to reopen on resubmission.

    Uses the latest ``project_rejected`` history entry; falls back to the
    first rejected step in the chain.
    """
    chain = project.approval_chain
    for entry in reversed(project.workflow_history):
        if entry.action != WorkflowAction.PROJECT_REJECTED:
            continue
        index = entry.metadata.get("rejectionPointIndex")
        if (
            isinstance(index, int)
            and 0 <= index < len(chain)
            and chain[index].status == StepStatus.REJECTED
        ):
            return index
        break
    for index, step in enumerate(chain):
        if step.status == StepStatus.REJECTED:
            return index
    return None


def transition_step(
    step: ApprovalStep,
    to_status: StepStatus,
    **changes,
) -> ApprovalStep:
    """Return ``step`` moved to ``to_status``, validated against STEP_TRANSITIONS."""
    if to_status not in STEP_TRANSITIONS.get(step.status, frozenset()):
        raise InvalidStepTransitionError(
            step.level.value, step.status.value, to_status.value,
        )
    return replace(step, status=to_status, **changes)


def chain_order_violations(chain: tuple[ApprovalStep, ...]) -> list[str]:
    """List ordering violations: a resolved step after an unresolved one."""
    violations = []
    blocked_at: int | None = None
    for index, step in enumerate(chain):
        if step.is_resolved:
            if blocked_at is not None and step.status == StepStatus.APPROVED:
                violations.append(
                    f"step {index} ({step.level.value}) approved after "
                    f"unresolved step {blocked_at}"
                )
        elif blocked_at is None:
            blocked_at = index
        elif step.status == StepStatus.REJECTED:
            violations.append(
                f"step {index} ({step.level.value}) rejected after "
                f"unresolved step {blocked_at}"
            )
    return violations


def _require_not_archived(project: Project) -> None:
    if project.is_archived:
        raise ProjectArchivedError(str(project.id), project.status.value)


def _require_current_step(
    project: Project,
    expected_level: ApprovalLevel | None,
) -> tuple[int, ApprovalStep]:
    _require_not_archived(project)
    index = current_step_index(project.approval_chain)
    if index is None or project.status in HALTED_PROJECT_STATUSES:
        raise NoPendingStepError(str(project.id), project.status.value)
    step = project.approval_chain[index]
    if expected_level is not None and ApprovalLevel(expected_level) != step.level:
        raise ConcurrentModificationError(
            str(project.id),
            f"expected current level {ApprovalLevel(expected_level).value}, "
            f"found {step.level.value}",
        )
    return index, step


def _require_authorized(
    project: Project,
    actor: ActorProfile,
    step: ApprovalStep,
    policy: AuthorizationPolicy,
) -> None:
    reason = authorization_denial_reason(actor, step, project, policy)
    if reason is not None:
        raise NotAuthorizedError(
            str(project.id), str(actor.user_id), step.level.value, reason,
        )


def _replace_step(
    chain: tuple[ApprovalStep, ...],
    index: int,
    step: ApprovalStep,
) -> tuple[ApprovalStep, ...]:
    return chain[:index] + (step,) + chain[index + 1:]
