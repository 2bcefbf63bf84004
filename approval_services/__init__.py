"""
approval_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure routing engines: database
    sessions, collaborator lookups, wall-clock time and the HTTP surface.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_kernel.logging_config import get_logger

logger = get_logger("services")

from approval_services.project_approval_service import ProjectApprovalService

__all__ = ["ProjectApprovalService"]
