"""ORM models for the approval kernel."""

from approval_kernel.models.project import (
    ApprovalStepModel,
    ProjectModel,
    RequiredDocumentModel,
    WorkflowHistoryModel,
)

__all__ = [
    "ApprovalStepModel",
    "ProjectModel",
    "RequiredDocumentModel",
    "WorkflowHistoryModel",
]
