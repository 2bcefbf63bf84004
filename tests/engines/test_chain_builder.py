"""
Tests for chain materialization.

Tests cover:
- build_chain: step order, initial statuses, department scoping of hod steps
- auto-approval for empty chains and immediate-execution scopes
- status_for_chain / terminal_status
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_engines.chain_builder import build_chain, status_for_chain, terminal_status
from approval_engines.policy_table import BudgetBand, PolicyTable, RouteStep
from approval_kernel.domain.approval import (
    ApprovalLevel,
    ApprovalStep,
    Project,
    ProjectScope,
    ProjectStatus,
    StepStatus,
)


# =========================================================================
# Factory helpers
# =========================================================================


def make_project(
    scope: ProjectScope = ProjectScope.EXTERNAL,
    budget: str = "2500000",
    requires_budget_allocation: bool = False,
) -> Project:
    return Project(
        id=uuid4(),
        scope=scope,
        budget=Decimal(budget),
        department_id=uuid4(),
        creator_id=uuid4(),
        requires_budget_allocation=requires_budget_allocation,
    )


def hod_table() -> PolicyTable:
    routes = {
        (ProjectScope.DEPARTMENTAL, False): (
            RouteStep(ApprovalLevel.HOD),
            RouteStep(ApprovalLevel.PROJECT_MANAGEMENT, skipped=True),
            RouteStep(ApprovalLevel.EXECUTIVE),
        ),
    }
    return PolicyTable(bands=(BudgetBand("all", None, routes),))


# =========================================================================
# build_chain
# =========================================================================


class TestBuildChain:
    """Chains built from the default table."""

    def test_external_chain_all_pending(self):
        build = build_chain(make_project(ProjectScope.EXTERNAL, "10000000", True))

        assert [s.level for s in build.chain] == [
            ApprovalLevel.LEGAL_COMPLIANCE,
            ApprovalLevel.FINANCE,
            ApprovalLevel.EXECUTIVE,
        ]
        assert all(s.status == StepStatus.PENDING for s in build.chain)
        assert build.initial_status == ProjectStatus.PENDING_LEGAL_COMPLIANCE_APPROVAL
        assert build.band == "major"
        assert not build.auto_approved

    def test_personal_without_allocation_auto_approved(self):
        build = build_chain(make_project(ProjectScope.PERSONAL, "500000"))

        assert build.chain == ()
        assert build.initial_status == ProjectStatus.APPROVED
        assert build.auto_approved

    def test_top_tier_submitter_auto_approved(self):
        build = build_chain(
            make_project(ProjectScope.EXTERNAL, "90000000", True),
            submitter_role_level=1000,
        )
        assert build.chain == ()
        assert build.initial_status == ProjectStatus.APPROVED

    def test_immediate_execution_scope_starts_in_implementation(self):
        build = build_chain(
            make_project(ProjectScope.PERSONAL, "10"),
            immediate_execution_scopes={ProjectScope.PERSONAL},
        )
        assert build.initial_status == ProjectStatus.IMPLEMENTATION
        assert build.auto_approved

    def test_steps_carry_no_decision_data(self):
        build = build_chain(make_project(ProjectScope.PERSONAL, "10", True))
        for step in build.chain:
            assert step.approver_id is None
            assert step.approved_at is None
            assert step.rejection_reason is None
            assert step.comments == ""

    def test_hod_step_scoped_to_project_department(self):
        project = make_project(ProjectScope.DEPARTMENTAL, "10")
        build = build_chain(project, table=hod_table())

        assert build.chain[0].department_ref == project.department_id
        assert build.chain[2].department_ref is None

    def test_skipped_route_step_is_not_current(self):
        build = build_chain(make_project(ProjectScope.DEPARTMENTAL, "10"), table=hod_table())

        assert build.chain[1].status == StepStatus.SKIPPED
        assert build.initial_status == ProjectStatus.PENDING_HOD_APPROVAL

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            build_chain(make_project(budget="-5"))


# =========================================================================
# Status helpers
# =========================================================================


class TestStatusForChain:

    def test_pending_status_names_current_level(self):
        chain = (
            ApprovalStep(ApprovalLevel.FINANCE, status=StepStatus.APPROVED),
            ApprovalStep(ApprovalLevel.EXECUTIVE),
        )
        assert status_for_chain(chain, ProjectScope.PERSONAL) == (
            ProjectStatus.PENDING_EXECUTIVE_APPROVAL
        )

    def test_resolved_chain_is_terminal(self):
        chain = (
            ApprovalStep(ApprovalLevel.FINANCE, status=StepStatus.APPROVED),
            ApprovalStep(ApprovalLevel.EXECUTIVE, status=StepStatus.SKIPPED),
        )
        assert status_for_chain(chain, ProjectScope.PERSONAL) == ProjectStatus.APPROVED

    @pytest.mark.parametrize("scope", list(ProjectScope))
    def test_terminal_status_default_is_approved(self, scope):
        assert terminal_status(scope) == ProjectStatus.APPROVED

    def test_terminal_status_for_immediate_execution(self):
        assert terminal_status(
            ProjectScope.DEPARTMENTAL, {ProjectScope.DEPARTMENTAL},
        ) == ProjectStatus.IMPLEMENTATION
