"""
ProjectStore -- locked load and versioned save of project records.

Responsibility:
    Loads a project row under ``SELECT ... FOR UPDATE``, converts it to the
    frozen domain record, and writes a changed record back.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  The caller owns
    the session and its transaction.

Invariants enforced:
    - Writes go through ``ProjectModel.apply_dto``; the ORM version column
      conditions each UPDATE on the version that was read.
    - A record can only be saved over the version it was derived from.

Failure modes:
    - ProjectNotFoundError: no row for the id.
    - ConcurrentModificationError: the row changed since it was read.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import Project
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    ProjectNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.project import ProjectModel

logger = get_logger("services.project_store")


class ProjectStore:
    """Session-scoped persistence for project workflow records."""

    def __init__(self, session: Session):
        self._session = session

    def load_for_update(self, project_id: UUID) -> ProjectModel:
        model = self._session.execute(
            select(ProjectModel)
            .where(ProjectModel.id == project_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ProjectNotFoundError(str(project_id))
        return model

    def add(self, project: Project) -> ProjectModel:
        model = ProjectModel.from_dto(project)
        self._session.add(model)
        self._session.flush()
        return model

    def save(self, model: ProjectModel, project: Project) -> None:
        """Write ``project`` over ``model``.

        ``project.version`` must be exactly one past the stored version.
        """
        if project.version != model.version + 1:
            raise ConcurrentModificationError(
                str(project.id),
                f"record version {project.version} does not follow "
                f"stored version {model.version}",
            )
        model.apply_dto(project)
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "stale_project_write",
                extra={"project_id": str(project.id), "version": project.version},
            )
            raise ConcurrentModificationError(
                str(project.id), "project was modified by another transaction",
            ) from exc
