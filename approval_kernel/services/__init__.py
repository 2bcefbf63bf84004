"""Kernel services: persistence and locking for project workflows."""

from approval_kernel.services.project_locks import ProjectLockRegistry
from approval_kernel.services.project_store import ProjectStore

__all__ = ["ProjectLockRegistry", "ProjectStore"]
