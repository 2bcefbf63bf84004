"""
approval_services.project_approval_service -- Project approval commands.

Responsibility:
    Runs project creation and the approve / reject / resubmit / cancel
    commands as short transactions.  Thin coordinator -- delegates routing
    and state changes to the pure engines, persistence to ProjectStore,
    identity, documents and compliance programs to collaborators.

Architecture position:
    Services layer.  May import from approval_engines/ (pure engines),
    approval_config/ and approval_kernel/ (domain, services, models).

Invariants enforced:
    - Commands on one project are serialized: in-process lock, then row
      lock, then version-conditioned write.
    - Expected command failures come back as ``CommandResult`` values;
      infrastructure failures propagate.
    - A refused command writes nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import partial
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from approval_config import CompiledRoutingConfig, get_active_config
from approval_engines import (
    approve as approve_step,
    build_chain,
    can_act,
    cancel as cancel_project,
    open_project,
    reject as reject_step,
    resubmit as resubmit_project,
    workflow_status as workflow_status_payload,
)
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    ActorProfile,
    ApprovalLevel,
    CommandResult,
    ComplianceProgramProvider,
    DocumentProvider,
    IdentityProvider,
    Project,
    ProjectScope,
    ProjectStatus,
    RejectionReason,
    RequiredDocument,
    WorkflowHistoryEntry,
    current_step,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidCommandError,
    InvalidProjectError,
    NotAuthorizedError,
    ProjectError,
    ProjectNotFoundError,
    RoutingError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.services.project_locks import ProjectLockRegistry
from approval_kernel.services.project_store import ProjectStore

logger = get_logger("services.project_approval")

E = TypeVar("E", bound=Enum)


class ProjectApprovalService:
    """Coordinates approval commands over persisted projects.

    Args:
        session_factory: Creates one session per command.
        identity: Resolves actor ids to role profiles.
        documents: Supplies required-document status; when absent the
            project's stored snapshot is used.
        compliance: Supplies compliance programs for the legal step.
        config: Compiled routing config; defaults to ``get_active_config()``.
        clock: Time source; defaults to the system clock.
        locks: Shared lock registry (share one per process).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        identity: IdentityProvider,
        *,
        documents: DocumentProvider | None = None,
        compliance: ComplianceProgramProvider | None = None,
        config: CompiledRoutingConfig | None = None,
        clock: Clock | None = None,
        locks: ProjectLockRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._identity = identity
        self._documents = documents
        self._compliance = compliance
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._locks = locks or ProjectLockRegistry()

    @property
    def config(self) -> CompiledRoutingConfig:
        return self._config

    # =====================================================================
    # Commands
    # =====================================================================

    def create_project(
        self,
        *,
        creator_id: UUID,
        scope: ProjectScope | str,
        budget: Decimal | int | str,
        department_id: UUID,
        name: str = "",
        department_name: str = "",
        requires_budget_allocation: bool = False,
        required_documents: Iterable[RequiredDocument] | None = None,
        project_id: UUID | None = None,
    ) -> CommandResult:
        """Create a project and build its approval chain.

        An empty chain auto-approves the project at creation.
        """
        project_id = project_id or uuid4()
        with LogContext.bind(
            project_id=str(project_id), actor_id=str(creator_id), command="create",
        ):
            try:
                project = self._new_project(
                    project_id=project_id,
                    creator_id=creator_id,
                    scope=scope,
                    budget=budget,
                    department_id=department_id,
                    name=name,
                    department_name=department_name,
                    requires_budget_allocation=requires_budget_allocation,
                    required_documents=required_documents,
                )
                with self._locks.hold(project_id):
                    with session_scope(self._session_factory) as session:
                        ProjectStore(session).add(project)
            except (ProjectError, RoutingError) as exc:
                return self._refused(exc)

            logger.info(
                "project_created",
                extra={
                    "scope": project.scope.value,
                    "budget": str(project.budget),
                    "band": project.workflow_history[0].metadata.get("band"),
                    "levels": [step.level.value for step in project.approval_chain],
                    "status": project.status.value,
                },
            )
            return CommandResult(success=True, project=project)

    def approve(
        self,
        project_id: UUID,
        actor_id: UUID,
        comments: str = "",
        *,
        compliance_program_id: str | None = None,
        level: ApprovalLevel | str | None = None,
        expected_version: int | None = None,
    ) -> CommandResult:
        """Approve the project's current step.

        Args:
            compliance_program_id: Required when the current step is
                ``legal_compliance``.
            level: Level the caller believes is current; a mismatch is
                reported as a concurrent modification.
            expected_version: Version the caller read.
        """

        def command(project: Project, actor: ActorProfile | None) -> Project:
            expected_level = _coerce(ApprovalLevel, "level", level)
            actor = self._require_actor(project, actor, actor_id)
            step = current_step(project.approval_chain)
            programs = ()
            if (
                step is not None
                and step.level == ApprovalLevel.LEGAL_COMPLIANCE
                and self._compliance is not None
            ):
                programs = tuple(self._compliance.get_compliant_programs())
            documents = (
                None if self._documents is None
                else self._documents.get_required_documents(project.id)
            )
            return approve_step(
                project,
                actor,
                comments,
                now=self._clock.now(),
                compliance_program_id=compliance_program_id,
                compliance_programs=programs,
                documents=documents,
                expected_level=expected_level,
                policy=self._config.authorization,
                immediate_execution_scopes=self._config.immediate_execution_scopes,
            )

        result = self._run("approve", project_id, actor_id, expected_version, command)
        if result.success:
            entry = _last_entry(result.project)
            logger.info(
                "approval_step_approved",
                extra={
                    "level": entry.metadata.get("level"),
                    "next_level": entry.metadata.get("nextLevel"),
                    "status": result.project.status.value,
                },
            )
        return result

    def reject(
        self,
        project_id: UUID,
        actor_id: UUID,
        reason_category: RejectionReason | str,
        comments: str = "",
        *,
        level: ApprovalLevel | str | None = None,
        expected_version: int | None = None,
    ) -> CommandResult:
        """Reject the project's current step and request revision.

        An unknown ``level`` or ``reason_category`` is refused with
        ``INVALID_COMMAND``.
        """

        def command(project: Project, actor: ActorProfile | None) -> Project:
            expected_level = _coerce(ApprovalLevel, "level", level)
            reason = _coerce(RejectionReason, "reason_category", reason_category or "")
            actor = self._require_actor(project, actor, actor_id)
            return reject_step(
                project,
                actor,
                reason,
                comments,
                now=self._clock.now(),
                expected_level=expected_level,
                policy=self._config.authorization,
            )

        result = self._run("reject", project_id, actor_id, expected_version, command)
        if result.success:
            entry = _last_entry(result.project)
            logger.info(
                "project_rejected",
                extra={
                    "rejection_point": entry.metadata["rejectionPoint"],
                    "reason_category": entry.metadata["reasonCategory"],
                },
            )
        return result

    def resubmit(
        self,
        project_id: UUID,
        actor_id: UUID,
        *,
        expected_version: int | None = None,
    ) -> CommandResult:
        """Send a revised project back to its rejection point."""

        def command(project: Project, actor: ActorProfile | None) -> Project:
            return resubmit_project(project, actor_id, now=self._clock.now())

        result = self._run(
            "resubmit", project_id, actor_id, expected_version, command,
            resolve_actor=False,
        )
        if result.success:
            entry = _last_entry(result.project)
            logger.info(
                "project_resubmitted",
                extra={
                    "rejection_point": entry.metadata["rejectionPoint"],
                    "preserved_approvals": entry.metadata["preservedApprovals"],
                },
            )
        return result

    def cancel(
        self,
        project_id: UUID,
        actor_id: UUID,
        reason: str = "",
        *,
        expected_version: int | None = None,
    ) -> CommandResult:
        """Withdraw a project that has not been approved."""

        def command(project: Project, actor: ActorProfile | None) -> Project:
            actor = self._require_actor(project, actor, actor_id)
            return cancel_project(
                project,
                actor,
                now=self._clock.now(),
                reason=reason,
                policy=self._config.authorization,
            )

        result = self._run("cancel", project_id, actor_id, expected_version, command)
        if result.success:
            logger.info("project_cancelled", extra={"reason": reason})
        return result

    # =====================================================================
    # Queries
    # =====================================================================

    def get_project(self, project_id: UUID) -> Project | None:
        with session_scope(self._session_factory) as session:
            return ProjectSelector(session).get(project_id)

    def list_projects(self, *statuses: ProjectStatus | str) -> list[Project]:
        with session_scope(self._session_factory) as session:
            return ProjectSelector(session).list_by_status(*statuses)

    def pending_for_actor(self, actor_id: UUID) -> list[Project]:
        """Projects whose current step ``actor_id`` may approve or reject."""
        actor = self._identity.get_actor(actor_id)
        if actor is None:
            return []
        check = partial(can_act, policy=self._config.authorization)
        with session_scope(self._session_factory) as session:
            return ProjectSelector(session).pending_for_actor(actor, check)

    def workflow_status(self, project_id: UUID) -> dict[str, Any]:
        """Workflow summary payload.

        Raises:
            ProjectNotFoundError: Unknown project id.
        """
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return workflow_status_payload(project)

    def history(self, project_id: UUID) -> list[WorkflowHistoryEntry]:
        with session_scope(self._session_factory) as session:
            return ProjectSelector(session).history(project_id)

    def verify_history(self, project_id: UUID) -> list[str]:
        """Problems found in the stored history hash chain (empty if intact)."""
        with session_scope(self._session_factory) as session:
            return ProjectSelector(session).verify_history_chain(project_id)

    # =====================================================================
    # Internals
    # =====================================================================

    def _new_project(
        self,
        *,
        project_id: UUID,
        creator_id: UUID,
        scope: ProjectScope | str,
        budget: Decimal | int | str,
        department_id: UUID,
        name: str,
        department_name: str,
        requires_budget_allocation: bool,
        required_documents: Iterable[RequiredDocument] | None,
    ) -> Project:
        try:
            scope = ProjectScope(scope)
        except ValueError as exc:
            raise InvalidProjectError(f"unknown scope {scope!r}") from exc
        try:
            amount = Decimal(str(budget))
        except InvalidOperation as exc:
            raise InvalidProjectError(f"budget {budget!r} is not a number") from exc
        if not amount.is_finite() or amount < 0:
            raise InvalidProjectError(f"budget must be non-negative, got {budget}")

        creator = self._identity.get_actor(creator_id)
        if required_documents is None and self._documents is not None:
            required_documents = self._documents.get_required_documents(project_id)

        project = Project(
            id=project_id,
            scope=scope,
            budget=amount,
            department_id=department_id,
            creator_id=creator_id,
            name=name,
            department_name=department_name or (creator.department_name if creator else ""),
            requires_budget_allocation=bool(requires_budget_allocation),
            required_documents=tuple(required_documents or ()),
        )
        build = build_chain(
            project,
            table=self._config.policy_table,
            submitter_role_level=None if creator is None else creator.role_level,
            immediate_execution_scopes=self._config.immediate_execution_scopes,
        )
        return open_project(project, build, now=self._clock.now())

    def _require_actor(
        self,
        project: Project,
        actor: ActorProfile | None,
        actor_id: UUID,
    ) -> ActorProfile:
        if actor is None:
            step = current_step(project.approval_chain)
            raise NotAuthorizedError(
                str(project.id),
                str(actor_id),
                "" if step is None else step.level.value,
                "unknown actor",
            )
        return actor

    def _run(
        self,
        command_name: str,
        project_id: UUID,
        actor_id: UUID,
        expected_version: int | None,
        command: Callable[[Project, ActorProfile | None], Project],
        *,
        resolve_actor: bool = True,
    ) -> CommandResult:
        with LogContext.bind(
            project_id=str(project_id), actor_id=str(actor_id), command=command_name,
        ):
            actor = self._identity.get_actor(actor_id) if resolve_actor else None
            try:
                with self._locks.hold(project_id):
                    with session_scope(self._session_factory) as session:
                        store = ProjectStore(session)
                        model = store.load_for_update(project_id)
                        project = model.to_dto()
                        if (
                            expected_version is not None
                            and project.version != expected_version
                        ):
                            raise ConcurrentModificationError(
                                str(project_id),
                                f"expected version {expected_version}, "
                                f"found {project.version}",
                            )
                        updated = command(project, actor)
                        store.save(model, updated)
            except (ProjectError, RoutingError) as exc:
                return self._refused(exc)
            return CommandResult(success=True, project=updated)

    def _refused(self, exc: ProjectError | RoutingError) -> CommandResult:
        logger.info(
            "command_refused",
            extra={"error_code": exc.code, "reason": str(exc)},
        )
        return CommandResult(success=False, error=exc)


def _last_entry(project: Project) -> WorkflowHistoryEntry:
    return project.workflow_history[-1]


def _coerce(enum_cls: type[E], field: str, value: E | str | None) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidCommandError(field, value) from exc
