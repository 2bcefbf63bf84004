"""
api.py

REST API layer for project approval routing.

Framework : FastAPI
Auth      : External.  The acting user's id arrives in the ``X-Actor-Id``
            header; role and department come from the identity
            collaborator behind ``ProjectApprovalService``.

Structure
---------
  /projects                          -- create, list
  /projects/pending-approval         -- projects the caller may act on
  /projects/{project_id}             -- project detail
  /projects/{project_id}/workflow-status
  /projects/{project_id}/history
  /projects/{project_id}/approve
  /projects/{project_id}/reject
  /projects/{project_id}/resubmit
  /projects/{project_id}/cancel

Error handling
--------------
  PROJECT_NOT_FOUND                       -> 404
  NOT_AUTHORIZED, INVALID_RESUBMIT_STATE  -> 403
  CONCURRENT_MODIFICATION                 -> 409
  any other ApprovalRoutingError          -> 422
  ValueError                              -> 422

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>", "code": "<CODE>", ...structured fields }

Running
-------
  app = create_app(ProjectApprovalService(session_factory, identity))
  uvicorn.run(app)
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from approval_engines import current_level_label, progress
from approval_kernel.domain.approval import (
    ApprovalLevel,
    CommandResult,
    Project,
    ProjectScope,
    ProjectStatus,
    RejectionReason,
    RequiredDocument,
    WorkflowHistoryEntry,
)
from approval_kernel.exceptions import ApprovalRoutingError, ProjectNotFoundError
from approval_services.project_approval_service import ProjectApprovalService

_STATUS_BY_CODE: dict[str, int] = {
    "PROJECT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_AUTHORIZED": status.HTTP_403_FORBIDDEN,
    "INVALID_RESUBMIT_STATE": status.HTTP_403_FORBIDDEN,
    "CONCURRENT_MODIFICATION": status.HTTP_409_CONFLICT,
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_service(request: Request) -> ProjectApprovalService:
    """The service bound to the running app."""
    return request.app.state.service


def get_actor_id(x_actor_id: uuid.UUID = Header(..., alias="X-Actor-Id")) -> uuid.UUID:
    return x_actor_id


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a payload in the standard success envelope."""
    return {"data": data}


def _iso(value) -> Optional[str]:
    return None if value is None else value.isoformat()


def _str(value) -> Optional[str]:
    return None if value is None else str(value)


def history_body(entry: WorkflowHistoryEntry) -> Dict:
    return {
        "action": entry.action.value,
        "actorId": str(entry.actor_id),
        "timestamp": _iso(entry.timestamp),
        "metadata": dict(entry.metadata),
    }


def project_body(project: Project) -> Dict:
    """JSON body for a project."""
    chain_progress = progress(project.approval_chain)
    return {
        "id": str(project.id),
        "name": project.name,
        "scope": project.scope.value,
        "budget": str(project.budget),
        "departmentId": str(project.department_id),
        "departmentName": project.department_name,
        "creatorId": str(project.creator_id),
        "status": project.status.value,
        "requiresBudgetAllocation": project.requires_budget_allocation,
        "complianceProgramId": project.compliance_program_id,
        "currentLevelLabel": current_level_label(project),
        "progress": chain_progress.percentage,
        "version": project.version,
        "requiredDocuments": [
            {
                "documentType": doc.document_type,
                "isSubmitted": doc.is_submitted,
                "documentId": doc.document_id,
            }
            for doc in project.required_documents
        ],
        "approvalChain": [
            {
                "level": step.level.value,
                "status": step.status.value,
                "approverId": _str(step.approver_id),
                "approvedAt": _iso(step.approved_at),
                "comments": step.comments,
                "departmentRef": _str(step.department_ref),
                "rejectionReason": (
                    None if step.rejection_reason is None else step.rejection_reason.value
                ),
                "rejectedBy": _str(step.rejected_by),
                "rejectedAt": _iso(step.rejected_at),
            }
            for step in project.approval_chain
        ],
        "workflowHistory": [history_body(entry) for entry in project.workflow_history],
    }


def _result_body(result: CommandResult) -> Dict:
    if not result.success:
        raise result.error
    return _ok(project_body(result.project))


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RequiredDocumentRequest(_CamelModel):
    document_type: str = Field(..., min_length=1, max_length=100, alias="documentType")
    is_submitted: bool = Field(default=False, alias="isSubmitted")
    document_id: Optional[str] = Field(default=None, alias="documentId")


class CreateProjectRequest(_CamelModel):
    name: str = Field(default="", max_length=200)
    scope: ProjectScope
    budget: Decimal = Field(..., ge=0)
    department_id: uuid.UUID = Field(..., alias="departmentId")
    department_name: str = Field(default="", alias="departmentName")
    requires_budget_allocation: bool = Field(default=False, alias="requiresBudgetAllocation")
    required_documents: Optional[List[RequiredDocumentRequest]] = Field(
        default=None, alias="requiredDocuments",
    )


class ApproveRequest(_CamelModel):
    level: Optional[ApprovalLevel] = None
    comments: str = Field(default="", max_length=2000)
    compliance_program_id: Optional[str] = Field(default=None, alias="complianceProgramId")
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


class RejectRequest(_CamelModel):
    level: Optional[ApprovalLevel] = None
    rejection_reason: RejectionReason = Field(..., alias="rejectionReason")
    comments: str = Field(default="", max_length=2000)
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


class ResubmitRequest(_CamelModel):
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


class CancelRequest(_CamelModel):
    reason: str = Field(default="", max_length=2000)
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


# ===========================================================================
# ROUTES
# ===========================================================================

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project and build its approval chain",
)
def create_project(
    body: CreateProjectRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    """The caller becomes the project creator."""
    documents = None
    if body.required_documents is not None:
        documents = [
            RequiredDocument(
                document_type=doc.document_type,
                is_submitted=doc.is_submitted,
                document_id=doc.document_id,
            )
            for doc in body.required_documents
        ]
    result = service.create_project(
        creator_id=actor_id,
        scope=body.scope,
        budget=body.budget,
        department_id=body.department_id,
        name=body.name,
        department_name=body.department_name,
        requires_budget_allocation=body.requires_budget_allocation,
        required_documents=documents,
    )
    return _result_body(result)


@project_router.get("", summary="List projects, optionally by status")
def list_projects(
    status_filter: Optional[List[ProjectStatus]] = Query(default=None, alias="status"),
    service: ProjectApprovalService = Depends(get_service),
):
    projects = service.list_projects(*(status_filter or ()))
    return _ok([project_body(p) for p in projects])


@project_router.get(
    "/pending-approval",
    summary="Projects whose current step the caller may act on",
)
def pending_approval(
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    return _ok([project_body(p) for p in service.pending_for_actor(actor_id)])


@project_router.get("/{project_id}", summary="Get a project by ID")
def get_project(
    project_id: uuid.UUID = Path(...),
    service: ProjectApprovalService = Depends(get_service),
):
    project = service.get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(str(project_id))
    return _ok(project_body(project))


@project_router.get(
    "/{project_id}/workflow-status",
    summary="Approval progress, current level and document status",
)
def workflow_status(
    project_id: uuid.UUID = Path(...),
    service: ProjectApprovalService = Depends(get_service),
):
    return _ok(service.workflow_status(project_id))


@project_router.get("/{project_id}/history", summary="Workflow history")
def history(
    project_id: uuid.UUID = Path(...),
    service: ProjectApprovalService = Depends(get_service),
):
    if service.get_project(project_id) is None:
        raise ProjectNotFoundError(str(project_id))
    return _ok([history_body(entry) for entry in service.history(project_id)])


@project_router.post("/{project_id}/approve", summary="Approve the current step")
def approve(
    body: ApproveRequest,
    project_id: uuid.UUID = Path(...),
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    result = service.approve(
        project_id,
        actor_id,
        body.comments,
        compliance_program_id=body.compliance_program_id,
        level=body.level,
        expected_version=body.expected_version,
    )
    return _result_body(result)


@project_router.post("/{project_id}/reject", summary="Reject the current step")
def reject(
    body: RejectRequest,
    project_id: uuid.UUID = Path(...),
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    result = service.reject(
        project_id,
        actor_id,
        body.rejection_reason,
        body.comments,
        level=body.level,
        expected_version=body.expected_version,
    )
    return _result_body(result)


@project_router.post("/{project_id}/resubmit", summary="Resubmit after revision")
def resubmit(
    body: Optional[ResubmitRequest] = None,
    project_id: uuid.UUID = Path(...),
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    expected_version = None if body is None else body.expected_version
    result = service.resubmit(project_id, actor_id, expected_version=expected_version)
    return _result_body(result)


@project_router.post("/{project_id}/cancel", summary="Cancel an unapproved project")
def cancel(
    body: Optional[CancelRequest] = None,
    project_id: uuid.UUID = Path(...),
    actor_id: uuid.UUID = Depends(get_actor_id),
    service: ProjectApprovalService = Depends(get_service),
):
    body = body or CancelRequest()
    result = service.cancel(
        project_id, actor_id, body.reason, expected_version=body.expected_version,
    )
    return _result_body(result)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

async def routing_error_handler(request, exc: ApprovalRoutingError):
    status_code = _STATUS_BY_CODE.get(exc.code, status.HTTP_422_UNPROCESSABLE_ENTITY)
    content = {"detail": str(exc), "code": exc.code}
    for key, value in exc.details().items():
        content.setdefault(key, value)
    return JSONResponse(status_code=status_code, content=content)


async def value_error_handler(request, exc: ValueError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


def create_app(service: ProjectApprovalService) -> FastAPI:
    """Build the API around a configured ``ProjectApprovalService``."""
    app = FastAPI(
        title="Project Approval Routing API",
        version="0.1.0",
        description=(
            "Budget-band approval routing for projects: chain building, "
            "approvals, rejections, resubmissions and workflow status."
        ),
    )
    app.state.service = service
    app.add_exception_handler(ApprovalRoutingError, routing_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.include_router(project_router)
    return app
