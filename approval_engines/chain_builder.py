"""
approval_engines.chain_builder -- Materialize a project's approval chain.

Responsibility:
    Turn the policy table's route for a project into an ordered tuple of
    ``ApprovalStep`` and the project's initial status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every step starts ``pending`` unless the route marks it ``skipped``;
      the current step is the first pending one (derived, never stored).
    - ``hod`` steps are scoped to the project's own department.
    - An empty chain yields a terminal initial status.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from approval_engines.policy_table import (
    DEFAULT_POLICY_TABLE,
    PolicyTable,
    resolve_route,
)
from approval_kernel.domain.approval import (
    ApprovalLevel,
    ApprovalStep,
    Project,
    ProjectScope,
    ProjectStatus,
    StepStatus,
    current_step,
    current_step_index,
)

__all__ = [
    "ChainBuild",
    "build_chain",
    "current_step",
    "current_step_index",
    "status_for_chain",
    "terminal_status",
]


@dataclass(frozen=True)
class ChainBuild:
    """Result of building a chain for a project."""

    chain: tuple[ApprovalStep, ...]
    initial_status: ProjectStatus
    band: str

    @property
    def auto_approved(self) -> bool:
        return self.initial_status in (
            ProjectStatus.APPROVED,
            ProjectStatus.IMPLEMENTATION,
        )


def terminal_status(
    scope: ProjectScope,
    immediate_execution_scopes: Collection[ProjectScope] = frozenset(),
) -> ProjectStatus:
    """Status of a project whose chain is fully resolved."""
    if scope in immediate_execution_scopes:
        return ProjectStatus.IMPLEMENTATION
    return ProjectStatus.APPROVED


def status_for_chain(
    chain: tuple[ApprovalStep, ...],
    scope: ProjectScope,
    immediate_execution_scopes: Collection[ProjectScope] = frozenset(),
) -> ProjectStatus:
    """``pending_<level>_approval`` for the current step, else terminal."""
    step = current_step(chain)
    if step is None:
        return terminal_status(scope, immediate_execution_scopes)
    return ProjectStatus.pending_for(step.level)


def build_chain(
    project: Project,
    *,
    table: PolicyTable = DEFAULT_POLICY_TABLE,
    submitter_role_level: int | None = None,
    immediate_execution_scopes: Collection[ProjectScope] = frozenset(),
) -> ChainBuild:
    """Build the approval chain and initial status for ``project``.

    Args:
        project: Project attributes (scope, budget, allocation flag,
            department).  Its current chain and status are ignored.
        table: Policy table to route with.
        submitter_role_level: Role level of the creator; the top tier is
            exempt from routing.
        immediate_execution_scopes: Scopes that start in ``implementation``
            instead of ``approved`` once the chain is resolved.

    Returns:
        ChainBuild with the chain (empty when auto-approved), the initial
        project status and the matched band name.
    """
    route = resolve_route(
        project.scope,
        project.budget,
        project.requires_budget_allocation,
        submitter_role_level=submitter_role_level,
        table=table,
    )
    chain = tuple(
        ApprovalStep(
            level=route_step.level,
            status=StepStatus.SKIPPED if route_step.skipped else StepStatus.PENDING,
            department_ref=(
                project.department_id
                if route_step.level == ApprovalLevel.HOD
                else None
            ),
        )
        for route_step in route
    )
    return ChainBuild(
        chain=chain,
        initial_status=status_for_chain(
            chain, project.scope, immediate_execution_scopes,
        ),
        band=table.band_for(project.budget).name,
    )
