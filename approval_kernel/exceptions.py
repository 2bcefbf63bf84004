"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval commands fail for reasons the caller must act on differently:
an unauthorized actor, a missing document, a stale read.  Callers must
never parse message strings to tell these apart.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        new_project = approve(project, actor, comments, now=now)
    except DocumentsIncompleteError as e:
        api_response(code=e.code, missing=e.missing_document_types)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalRoutingError:

    ApprovalRoutingError (base)
    |
    +-- ProjectError
    |   +-- ProjectNotFoundError
    |   +-- ProjectArchivedError
    |   +-- InvalidProjectError
    |
    +-- RoutingError                (expected, recoverable command failures)
    |   +-- NoPendingStepError
    |   +-- NotAuthorizedError
    |   +-- ComplianceError
    |   |   +-- MissingComplianceProgramError
    |   |   +-- NonCompliantProgramError
    |   |   +-- ComplianceProgramNotFoundError
    |   +-- DocumentsIncompleteError
    |   +-- InvalidResubmitStateError
    |   +-- InvalidCancelStateError
    |   +-- InvalidStepTransitionError
    |   +-- InvalidCommandError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|---------------------------------------
Project      | PROJECT_NOT_FOUND             | Project ID doesn't exist
             | PROJECT_ARCHIVED              | Command on completed/cancelled project
             | INVALID_PROJECT               | Creation input rejected (negative budget)
-------------|-------------------------------|---------------------------------------
Routing      | NO_PENDING_STEP               | Chain resolved, halted, or never built
             | NOT_AUTHORIZED                | Actor fails authorization (incl. self)
             | MISSING_COMPLIANCE_PROGRAM    | Legal step approved without a program
             | NON_COMPLIANT_PROGRAM         | Program has non-compliant items
             | COMPLIANCE_PROGRAM_NOT_FOUND  | Program ID unknown to the collaborator
             | DOCUMENTS_INCOMPLETE          | Required documents not all submitted
             | INVALID_RESUBMIT_STATE        | Not halted, or actor is not the creator
             | INVALID_CANCEL_STATE          | Project cannot be cancelled
             | INVALID_STEP_TRANSITION       | Step transition outside STEP_TRANSITIONS
             | INVALID_COMMAND               | Unknown level or rejection reason
             | CONCURRENT_MODIFICATION       | Stale version or stale current level
-------------|-------------------------------|---------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Modifying an append-only history row
-------------|-------------------------------|---------------------------------------
Config       | CONFIGURATION_ERROR           | Routing configuration failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

RoutingError and ProjectError are expected conditions.  The service layer
converts them to ``CommandResult(success=False, error=exc)``; the HTTP layer
maps ``code`` to a status.  Anything else (database unreachable, collaborator
failure) propagates and is retried by the caller.

    result = service.approve(project_id, actor_id, "ok")
    if not result.success:
        if isinstance(result.error, ConcurrentModificationError):
            ...  # re-read and retry
"""

from __future__ import annotations


class ApprovalRoutingError(Exception):
    """
    Base exception for all approval routing errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_ROUTING_ERROR"

    def details(self) -> dict:
        """Structured, JSON-safe attributes of this error."""
        return {
            k: _jsonable(v)
            for k, v in vars(self).items()
            if not k.startswith("_")
        }


def _jsonable(value):
    if isinstance(value, (tuple, list, frozenset, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# Project-related exceptions


class ProjectError(ApprovalRoutingError):
    """Base exception for project-level errors."""

    code: str = "PROJECT_ERROR"


class ProjectNotFoundError(ProjectError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class ProjectArchivedError(ProjectError):
    """Project reached an archived status and is read-only."""

    code: str = "PROJECT_ARCHIVED"

    def __init__(self, project_id: str, status: str):
        self.project_id = project_id
        self.status = status
        super().__init__(f"Project {project_id} is archived (status={status})")


class InvalidProjectError(ProjectError):
    """Project creation input was rejected."""

    code: str = "INVALID_PROJECT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid project: {reason}")


# Routing (command) exceptions


class RoutingError(ApprovalRoutingError):
    """Base exception for expected approval command failures."""

    code: str = "ROUTING_ERROR"


class NoPendingStepError(RoutingError):
    """The chain has no actionable step."""

    code: str = "NO_PENDING_STEP"

    def __init__(self, project_id: str, status: str):
        self.project_id = project_id
        self.status = status
        super().__init__(
            f"Project {project_id} has no pending approval step (status={status})"
        )


class NotAuthorizedError(RoutingError):
    """Actor may not act on the current step."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, project_id: str, actor_id: str, level: str, reason: str):
        self.project_id = project_id
        self.actor_id = actor_id
        self.level = level
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} is not authorized for {level} on project "
            f"{project_id}: {reason}"
        )


class ComplianceError(RoutingError):
    """Base exception for legal/compliance step preconditions."""

    code: str = "COMPLIANCE_ERROR"


class MissingComplianceProgramError(ComplianceError):
    """Legal/compliance step approved without a compliance program."""

    code: str = "MISSING_COMPLIANCE_PROGRAM"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(
            f"Project {project_id}: a compliance program is required to "
            "approve the legal_compliance step"
        )


class NonCompliantProgramError(ComplianceError):
    """Compliance program has items that are not compliant."""

    code: str = "NON_COMPLIANT_PROGRAM"

    def __init__(
        self,
        project_id: str,
        program_id: str,
        non_compliant_statuses: tuple[str, ...],
    ):
        self.project_id = project_id
        self.program_id = program_id
        self.non_compliant_statuses = non_compliant_statuses
        super().__init__(
            f"Compliance program {program_id} is not fully compliant: "
            f"{len(non_compliant_statuses)} item(s) outstanding"
        )


class ComplianceProgramNotFoundError(ComplianceError):
    """Compliance program ID unknown to the compliance collaborator."""

    code: str = "COMPLIANCE_PROGRAM_NOT_FOUND"

    def __init__(self, project_id: str, program_id: str):
        self.project_id = project_id
        self.program_id = program_id
        super().__init__(f"Compliance program not found: {program_id}")


class DocumentsIncompleteError(RoutingError):
    """Required documents are not all submitted."""

    code: str = "DOCUMENTS_INCOMPLETE"

    def __init__(self, project_id: str, missing_document_types: tuple[str, ...]):
        self.project_id = project_id
        self.missing_document_types = missing_document_types
        self.missing_count = len(missing_document_types)
        super().__init__(
            f"Cannot approve project {project_id}: {self.missing_count} "
            "required document(s) still need to be submitted"
        )


class InvalidResubmitStateError(RoutingError):
    """Resubmit attempted outside a halted state, or by a non-creator."""

    code: str = "INVALID_RESUBMIT_STATE"

    def __init__(self, project_id: str, status: str, reason: str):
        self.project_id = project_id
        self.status = status
        self.reason = reason
        super().__init__(f"Cannot resubmit project {project_id}: {reason}")


class InvalidCancelStateError(RoutingError):
    """Cancel attempted on a project that cannot be cancelled."""

    code: str = "INVALID_CANCEL_STATE"

    def __init__(self, project_id: str, status: str, reason: str):
        self.project_id = project_id
        self.status = status
        self.reason = reason
        super().__init__(f"Cannot cancel project {project_id}: {reason}")


class InvalidStepTransitionError(RoutingError):
    """Step status change outside STEP_TRANSITIONS."""

    code: str = "INVALID_STEP_TRANSITION"

    def __init__(self, level: str, from_status: str, to_status: str):
        self.level = level
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid step transition for {level}: {from_status} -> {to_status}"
        )


class InvalidCommandError(RoutingError):
    """A command argument is not one of the accepted values."""

    code: str = "INVALID_COMMAND"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r}")


class ConcurrentModificationError(RoutingError):
    """
    The project changed since the caller read it.

    Caller should re-read state and retry.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, project_id: str, reason: str):
        self.project_id = project_id
        self.reason = reason
        super().__init__(
            f"Concurrent modification on project {project_id}: {reason}"
        )


# Immutability


class ImmutabilityViolationError(ApprovalRoutingError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration


class ConfigurationError(ApprovalRoutingError):
    """Routing configuration failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, errors: tuple[str, ...]):
        self.source = source
        self.errors = errors
        super().__init__(
            f"Invalid routing configuration {source}: " + "; ".join(errors)
        )
