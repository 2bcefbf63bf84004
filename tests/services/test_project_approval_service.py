"""
Tests for ProjectApprovalService against a real database.

Tests cover:
- Creation: routing, auto-approval, input validation
- Approve / reject / resubmit / cancel through persistence
- Refused commands write nothing
- Version checks, queries, workflow status and history verification
- Structured log events
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ActorProfile,
    ApprovalLevel,
    ProjectScope,
    ProjectStatus,
    RejectionReason,
    RequiredDocument,
    StepStatus,
    WorkflowAction,
)
from approval_kernel.exceptions import ProjectNotFoundError


# =========================================================================
# Helpers
# =========================================================================


def create(service, org, scope=ProjectScope.EXTERNAL, budget="10000000",
           allocation=True, creator=None, **kwargs):
    creator = creator or org.creator
    result = service.create_project(
        creator_id=creator.user_id,
        scope=scope,
        budget=budget,
        department_id=org.department_id,
        name="Warehouse expansion",
        requires_budget_allocation=allocation,
        **kwargs,
    )
    assert result.success, result.reason
    return result.project


def approve_legal(service, org, project):
    result = service.approve(
        project.id, org.legal.user_id, "legal ok", compliance_program_id="CP-001",
    )
    assert result.success, result.reason
    return result.project


def chain_statuses(project):
    return [(step.level, step.status) for step in project.approval_chain]


# =========================================================================
# Creation
# =========================================================================


class TestCreateProject:

    def test_personal_without_allocation_auto_approved(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "500000", allocation=False)

        assert project.approval_chain == ()
        assert project.status == ProjectStatus.APPROVED
        stored = service.get_project(project.id)
        assert stored.status == ProjectStatus.APPROVED
        assert [e.action for e in stored.workflow_history] == [
            WorkflowAction.PROJECT_CREATED,
            WorkflowAction.PROJECT_AUTO_APPROVED,
        ]

    def test_external_with_allocation_chain(self, service, org):
        project = create(service, org)
        stored = service.get_project(project.id)

        assert chain_statuses(stored) == [
            (ApprovalLevel.LEGAL_COMPLIANCE, StepStatus.PENDING),
            (ApprovalLevel.FINANCE, StepStatus.PENDING),
            (ApprovalLevel.EXECUTIVE, StepStatus.PENDING),
        ]
        assert stored.status == ProjectStatus.PENDING_LEGAL_COMPLIANCE_APPROVAL
        assert stored.budget == Decimal("10000000")
        assert stored.department_name == "Operations"
        assert stored.version == 1

    def test_top_tier_creator_auto_approved(self, service, org):
        project = create(service, org, creator=org.admin)
        assert project.approval_chain == ()
        assert project.status == ProjectStatus.APPROVED

    def test_documents_from_provider(self, service, org, documents):
        project_id = uuid4()
        documents.set(project_id, [RequiredDocument("charter")])
        project = create(service, org, project_id=project_id)

        assert project.id == project_id
        stored = service.get_project(project_id)
        assert stored.required_documents == (RequiredDocument("charter"),)

    @pytest.mark.parametrize("budget", ["-1", "abc", "NaN"])
    def test_invalid_budget_refused(self, service, org, budget):
        result = service.create_project(
            creator_id=org.creator.user_id,
            scope=ProjectScope.PERSONAL,
            budget=budget,
            department_id=org.department_id,
        )
        assert not result.success
        assert result.error_code == "INVALID_PROJECT"
        assert service.list_projects() == []

    def test_unknown_scope_refused(self, service, org):
        result = service.create_project(
            creator_id=org.creator.user_id,
            scope="galactic",
            budget="10",
            department_id=org.department_id,
        )
        assert result.error_code == "INVALID_PROJECT"

    def test_creation_logged(self, service, org, captured_logs):
        create(service, org)
        records = [r for r in captured_logs() if r["message"] == "project_created"]

        assert len(records) == 1
        assert records[0]["band"] == "major"
        assert records[0]["levels"] == ["legal_compliance", "finance", "executive"]
        assert records[0]["command"] == "create"


# =========================================================================
# Approve
# =========================================================================


class TestApprove:

    def test_full_walk(self, service, org):
        project = approve_legal(service, org, create(service, org))
        assert project.status == ProjectStatus.PENDING_FINANCE_APPROVAL

        result = service.approve(project.id, org.finance.user_id, "ok")
        assert result.success
        result = service.approve(project.id, org.executive.user_id, "go")
        assert result.success
        assert result.project.status == ProjectStatus.APPROVED

        stored = service.get_project(project.id)
        assert stored.status == ProjectStatus.APPROVED
        assert stored.compliance_program_id == "CP-001"
        assert stored.version == 4
        assert [s.approver_id for s in stored.approval_chain] == [
            org.legal.user_id, org.finance.user_id, org.executive.user_id,
        ]

    def test_legal_step_requires_compliance_program(self, service, org):
        project = create(service, org)
        result = service.approve(project.id, org.legal.user_id, "ok")

        assert not result.success
        assert result.error_code == "MISSING_COMPLIANCE_PROGRAM"
        stored = service.get_project(project.id)
        assert stored.approval_chain == project.approval_chain
        assert stored.version == 1

    def test_non_compliant_program(self, service, org):
        project = create(service, org)
        result = service.approve(
            project.id, org.legal.user_id, compliance_program_id="CP-002",
        )
        assert result.error_code == "NON_COMPLIANT_PROGRAM"
        assert result.error.non_compliant_statuses == ("In Progress",)
        assert service.get_project(project.id).compliance_program_id is None

    def test_unknown_program(self, service, org):
        project = create(service, org)
        result = service.approve(
            project.id, org.legal.user_id, compliance_program_id="CP-999",
        )
        assert result.error_code == "COMPLIANCE_PROGRAM_NOT_FOUND"

    def test_creator_cannot_approve_own_project(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "10", allocation=True)
        result = service.approve(project.id, org.creator.user_id)

        assert result.error_code == "NOT_AUTHORIZED"
        assert "creators cannot approve" in result.reason

    def test_promoted_creator_still_cannot_approve(self, service, org, identity):
        project = create(service, org, ProjectScope.PERSONAL, "10", True)
        identity.add(ActorProfile(org.creator.user_id, 1000, org.department_id, "Finance & Accounting"))

        result = service.approve(project.id, org.creator.user_id)
        assert result.error_code == "NOT_AUTHORIZED"

    def test_staff_below_threshold_refused(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "10", True)
        result = service.approve(project.id, org.staff.user_id)
        assert result.error_code == "NOT_AUTHORIZED"

    def test_admin_may_approve_any_step(self, service, org):
        project = create(service, org)
        result = service.approve(
            project.id, org.admin.user_id, compliance_program_id="CP-001",
        )
        assert result.success

    def test_unknown_actor_refused(self, service, org):
        project = create(service, org)
        result = service.approve(project.id, uuid4(), compliance_program_id="CP-001")
        assert result.error_code == "NOT_AUTHORIZED"
        assert result.error.reason == "unknown actor"

    def test_documents_incomplete(self, service, org, documents):
        project_id = uuid4()
        documents.set(project_id, [
            RequiredDocument("charter", is_submitted=True),
            RequiredDocument("budget_plan"),
        ])
        project = create(service, org, project_id=project_id)

        result = service.approve(project.id, org.legal.user_id, compliance_program_id="CP-001")
        assert result.error_code == "DOCUMENTS_INCOMPLETE"
        assert result.error.missing_document_types == ("budget_plan",)
        assert service.get_project(project.id).approval_chain == project.approval_chain

        documents.submit_all(project_id)
        assert service.approve(
            project.id, org.legal.user_id, compliance_program_id="CP-001",
        ).success
        stored = service.get_project(project.id)
        assert all(d.is_submitted for d in stored.required_documents)

    def test_no_pending_step(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "10", allocation=False)
        result = service.approve(project.id, org.admin.user_id)
        assert result.error_code == "NO_PENDING_STEP"

    def test_unknown_project(self, service, org):
        result = service.approve(uuid4(), org.admin.user_id)
        assert result.error_code == "PROJECT_NOT_FOUND"

    def test_stale_level(self, service, org):
        project = create(service, org)
        result = service.approve(
            project.id, org.finance.user_id, level=ApprovalLevel.FINANCE,
        )
        assert result.error_code == "CONCURRENT_MODIFICATION"

    def test_stale_version(self, service, org):
        project = approve_legal(service, org, create(service, org))
        result = service.approve(project.id, org.finance.user_id, expected_version=1)

        assert result.error_code == "CONCURRENT_MODIFICATION"
        assert service.get_project(project.id).version == 2
        assert service.approve(
            project.id, org.finance.user_id, expected_version=2,
        ).success

    def test_approval_logged(self, service, org, captured_logs):
        approve_legal(service, org, create(service, org))
        records = [r for r in captured_logs() if r["message"] == "approval_step_approved"]

        assert len(records) == 1
        assert records[0]["level"] == "legal_compliance"
        assert records[0]["next_level"] == "finance"

    def test_refusal_logged(self, service, org, captured_logs):
        project = create(service, org)
        service.approve(project.id, org.legal.user_id)
        records = [r for r in captured_logs() if r["message"] == "command_refused"]

        assert records[-1]["error_code"] == "MISSING_COMPLIANCE_PROGRAM"
        assert records[-1]["project_id"] == str(project.id)


# =========================================================================
# Reject / resubmit
# =========================================================================


class TestRejectAndResubmit:

    def test_resubmit_after_finance_rejection(self, service, org):
        project = approve_legal(service, org, create(service, org))

        rejected = service.reject(
            project.id, org.finance.user_id, RejectionReason.BUDGET_ISSUES, "trim it",
        )
        assert rejected.success
        assert rejected.project.status == ProjectStatus.REVISION_REQUIRED

        result = service.resubmit(project.id, org.creator.user_id)
        assert result.success
        stored = service.get_project(project.id)
        assert stored.status == ProjectStatus.RESUBMITTED
        assert chain_statuses(stored) == [
            (ApprovalLevel.LEGAL_COMPLIANCE, StepStatus.APPROVED),
            (ApprovalLevel.FINANCE, StepStatus.PENDING),
            (ApprovalLevel.EXECUTIVE, StepStatus.PENDING),
        ]
        assert stored.approval_chain[0].approver_id == org.legal.user_id
        assert stored.approval_chain[1].rejection_reason is None
        assert stored.workflow_history[-1].metadata["preservedApprovals"] == [
            "legal_compliance",
        ]

    def test_rejection_persisted(self, service, org):
        project = create(service, org, ProjectScope.DEPARTMENTAL, "2000000", True)
        service.reject(project.id, org.finance.user_id, "timeline_issues", "later")

        step = service.get_project(project.id).approval_chain[0]
        assert step.status == StepStatus.REJECTED
        assert step.rejection_reason == RejectionReason.TIMELINE_ISSUES
        assert step.rejected_by == org.finance.user_id
        assert step.comments == "later"

    def test_resubmitted_project_completes(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "10", True)
        service.reject(project.id, org.finance.user_id, RejectionReason.OTHER)
        service.resubmit(project.id, org.creator.user_id)

        assert service.approve(project.id, org.finance.user_id).success
        result = service.approve(project.id, org.executive.user_id)
        assert result.project.status == ProjectStatus.APPROVED

    def test_unknown_reason_is_refused(self, service, org):
        project = create(service, org)
        result = service.reject(project.id, org.legal.user_id, "bored")

        assert not result.success
        assert result.error_code == "INVALID_COMMAND"
        assert result.error.field == "reason_category"
        stored = service.get_project(project.id)
        assert stored.version == 1
        assert stored.status == ProjectStatus.PENDING_LEGAL_COMPLIANCE_APPROVAL

    def test_unknown_level_is_refused(self, service, org):
        project = create(service, org)
        for result in (
            service.approve(project.id, org.legal.user_id, level="treasury",
                            compliance_program_id="CP-001"),
            service.reject(project.id, org.legal.user_id, RejectionReason.OTHER,
                           level="treasury"),
        ):
            assert not result.success
            assert result.error_code == "INVALID_COMMAND"
            assert result.error.value == "treasury"
        assert service.get_project(project.id).version == 1

    def test_only_creator_resubmits(self, service, org):
        project = create(service, org)
        service.reject(project.id, org.legal.user_id, RejectionReason.COMPLIANCE_CONCERNS)

        result = service.resubmit(project.id, org.admin.user_id)
        assert result.error_code == "INVALID_RESUBMIT_STATE"
        assert service.get_project(project.id).status == ProjectStatus.REVISION_REQUIRED

    def test_resubmit_requires_halted_project(self, service, org):
        project = create(service, org)
        result = service.resubmit(project.id, org.creator.user_id)
        assert result.error_code == "INVALID_RESUBMIT_STATE"

    def test_events_logged(self, service, org, captured_logs):
        project = create(service, org)
        service.reject(project.id, org.legal.user_id, RejectionReason.SCOPE_CONCERNS)
        service.resubmit(project.id, org.creator.user_id)

        by_message = {r["message"]: r for r in captured_logs()}
        assert by_message["project_rejected"]["rejection_point"] == "legal_compliance"
        assert by_message["project_rejected"]["reason_category"] == "scope_concerns"
        assert by_message["project_resubmitted"]["preserved_approvals"] == []


# =========================================================================
# Cancel
# =========================================================================


class TestCancel:

    def test_creator_cancels(self, service, org):
        project = create(service, org)
        result = service.cancel(project.id, org.creator.user_id, "descoped")

        assert result.success
        stored = service.get_project(project.id)
        assert stored.status == ProjectStatus.CANCELLED
        assert stored.workflow_history[-1].metadata["reason"] == "descoped"

    def test_cancelled_project_is_read_only(self, service, org):
        project = create(service, org)
        service.cancel(project.id, org.admin.user_id)
        result = service.approve(project.id, org.admin.user_id, compliance_program_id="CP-001")
        assert result.error_code == "PROJECT_ARCHIVED"

    def test_other_approver_cannot_cancel(self, service, org):
        project = create(service, org)
        assert service.cancel(project.id, org.legal.user_id).error_code == "INVALID_CANCEL_STATE"


# =========================================================================
# Queries
# =========================================================================


class TestQueries:

    def test_pending_for_actor(self, service, org):
        external = create(service, org)
        internal = create(service, org, ProjectScope.PERSONAL, "10", True)
        create(service, org, ProjectScope.PERSONAL, "10", False)

        assert [p.id for p in service.pending_for_actor(org.legal.user_id)] == [external.id]
        assert [p.id for p in service.pending_for_actor(org.finance.user_id)] == [internal.id]
        assert {p.id for p in service.pending_for_actor(org.admin.user_id)} == {
            external.id, internal.id,
        }
        assert service.pending_for_actor(org.creator.user_id) == []
        assert service.pending_for_actor(uuid4()) == []

    def test_pending_excludes_halted(self, service, org):
        project = create(service, org, ProjectScope.PERSONAL, "10", True)
        service.reject(project.id, org.finance.user_id, RejectionReason.OTHER)
        assert service.pending_for_actor(org.finance.user_id) == []

        service.resubmit(project.id, org.creator.user_id)
        assert [p.id for p in service.pending_for_actor(org.finance.user_id)] == [project.id]

    def test_list_projects_by_status(self, service, org):
        pending = create(service, org)
        approved = create(service, org, ProjectScope.PERSONAL, "10", False)

        assert [p.id for p in service.list_projects(ProjectStatus.APPROVED)] == [approved.id]
        assert [p.id for p in service.list_projects("pending_legal_compliance_approval")] == [
            pending.id,
        ]
        assert len(service.list_projects()) == 2

    def test_workflow_status(self, service, org):
        project = create(service, org)
        service.reject(project.id, org.legal.user_id, RejectionReason.COMPLIANCE_CONCERNS)
        payload = service.workflow_status(project.id)

        assert payload["status"] == "revision_required"
        assert payload["currentLevel"] is None
        assert payload["currentLevelLabel"] == "Legal & Compliance Approval (Revision Required)"
        assert payload["version"] == 2

    def test_workflow_status_unknown_project(self, service):
        with pytest.raises(ProjectNotFoundError):
            service.workflow_status(uuid4())

    def test_history_and_verification(self, service, org):
        project = approve_legal(service, org, create(service, org))
        history = service.history(project.id)

        assert [e.action for e in history] == [
            WorkflowAction.PROJECT_CREATED,
            WorkflowAction.COMPLIANCE_PROGRAM_ATTACHED,
            WorkflowAction.PROJECT_APPROVED,
        ]
        assert history[1].metadata["complianceProgramId"] == "CP-001"
        assert service.verify_history(project.id) == []

    def test_timestamps_come_from_clock(self, service, org, clock):
        project = approve_legal(service, org, create(service, org))
        stored = service.get_project(project.id)
        assert stored.approval_chain[0].approved_at == clock.now()
        assert all(e.timestamp == clock.now() for e in stored.workflow_history)
