"""
approval_engines.authorization -- Who may act on an approval step.

Responsibility:
    Decide whether an actor (role level, department) may approve or reject
    a project's pending step.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    Rules are evaluated in this order:
    1. The project creator may never act on their own project.
    2. Actors at the top privilege tier may act on any step.
    3. Otherwise the actor must be at least department-head tier and
       belong to the department that owns the step's level (``hod`` steps
       are owned by the step's ``department_ref``).
    4. Unmapped levels are denied.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from approval_kernel.domain.approval import (
    ActorProfile,
    ApprovalLevel,
    ApprovalStep,
    Project,
)

DEFAULT_LEVEL_DEPARTMENTS: Mapping[ApprovalLevel, str] = MappingProxyType({
    ApprovalLevel.PROJECT_MANAGEMENT: "Project Management",
    # legacy level name
    ApprovalLevel.DEPARTMENT: "Project Management",
    ApprovalLevel.FINANCE: "Finance & Accounting",
    ApprovalLevel.BUDGET_ALLOCATION: "Finance & Accounting",
    ApprovalLevel.LEGAL_COMPLIANCE: "Legal & Compliance",
    ApprovalLevel.EXECUTIVE: "Executive Office",
})


@dataclass(frozen=True)
class AuthorizationPolicy:
    """Role thresholds and owning departments per level."""

    hod_threshold: int = 700
    top_privilege_level: int = 1000
    level_departments: Mapping[ApprovalLevel, str] = field(
        default_factory=lambda: DEFAULT_LEVEL_DEPARTMENTS
    )


DEFAULT_AUTHORIZATION_POLICY = AuthorizationPolicy()


def authorization_denial_reason(
    actor: ActorProfile,
    step: ApprovalStep,
    project: Project,
    policy: AuthorizationPolicy = DEFAULT_AUTHORIZATION_POLICY,
) -> str | None:
    """Return why ``actor`` may not act on ``step``, or None if they may."""
    if actor.user_id == project.creator_id:
        return "creators cannot approve their own project"

    if actor.role_level >= policy.top_privilege_level:
        return None

    if actor.role_level < policy.hod_threshold:
        return (
            f"role level {actor.role_level} below department-head "
            f"threshold {policy.hod_threshold}"
        )

    if step.level == ApprovalLevel.HOD:
        if step.department_ref is None or actor.department_id != step.department_ref:
            return "hod step belongs to another department"
        return None

    department = policy.level_departments.get(step.level)
    if department is None:
        return f"no authority configured for level {step.level.value}"
    if actor.department_name != department:
        return f"{step.level.value} step requires the {department} department"
    return None


def can_act(
    actor: ActorProfile,
    step: ApprovalStep,
    project: Project,
    policy: AuthorizationPolicy = DEFAULT_AUTHORIZATION_POLICY,
) -> bool:
    """True if ``actor`` may approve or reject ``step`` on ``project``."""
    return authorization_denial_reason(actor, step, project, policy) is None
