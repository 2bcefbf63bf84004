"""
Pytest fixtures for the approval routing test suite.

Provides:
- Structured logging setup and log capture
- A file-backed SQLite database per test (tables created fresh)
- In-memory identity, document and compliance collaborators
- A wired ProjectApprovalService with a deterministic clock

Environment Variables:
- DATABASE_URL: optional SQLAlchemy URL (e.g. a PostgreSQL test database).
  If not set, each test gets its own SQLite file under tmp_path.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from io import StringIO
from uuid import UUID, uuid4

import pytest

from approval_config import get_active_config
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import (
    ActorProfile,
    ComplianceItem,
    ComplianceProgram,
    RequiredDocument,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.project_locks import ProjectLockRegistry
from approval_services.project_approval_service import ProjectApprovalService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_step_approved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Collaborators
# =============================================================================


class InMemoryIdentityProvider:
    """Identity collaborator backed by a dict."""

    def __init__(self, actors=()):
        self._actors: dict[UUID, ActorProfile] = {a.user_id: a for a in actors}

    def add(self, actor: ActorProfile) -> ActorProfile:
        self._actors[actor.user_id] = actor
        return actor

    def get_actor(self, user_id: UUID) -> ActorProfile | None:
        return self._actors.get(user_id)


class InMemoryDocumentProvider:
    """Document collaborator; projects without an entry have no requirements."""

    def __init__(self):
        self._documents: dict[UUID, list[RequiredDocument]] = {}

    def set(self, project_id: UUID, documents: list[RequiredDocument]) -> None:
        self._documents[project_id] = list(documents)

    def submit_all(self, project_id: UUID) -> None:
        self._documents[project_id] = [
            RequiredDocument(d.document_type, is_submitted=True, document_id=d.document_id)
            for d in self._documents.get(project_id, [])
        ]

    def get_required_documents(self, project_id: UUID) -> list[RequiredDocument]:
        return list(self._documents.get(project_id, []))


class InMemoryComplianceProvider:
    """Compliance-program collaborator backed by a list."""

    def __init__(self, programs=()):
        self._programs = list(programs)

    def add(self, program: ComplianceProgram) -> ComplianceProgram:
        self._programs.append(program)
        return program

    def get_compliant_programs(self) -> list[ComplianceProgram]:
        return list(self._programs)


@dataclass
class Org:
    """People in the test organization."""

    department_id: UUID
    creator: ActorProfile
    second_creator: ActorProfile
    hod: ActorProfile
    finance: ActorProfile
    legal: ActorProfile
    executive: ActorProfile
    project_management: ActorProfile
    admin: ActorProfile
    staff: ActorProfile
    everyone: list[ActorProfile] = field(default_factory=list)


@pytest.fixture
def org() -> Org:
    department_id = uuid4()
    people = dict(
        creator=ActorProfile(uuid4(), 300, department_id, "Operations"),
        second_creator=ActorProfile(uuid4(), 300, department_id, "Operations"),
        hod=ActorProfile(uuid4(), 700, department_id, "Operations"),
        finance=ActorProfile(uuid4(), 800, uuid4(), "Finance & Accounting"),
        legal=ActorProfile(uuid4(), 800, uuid4(), "Legal & Compliance"),
        executive=ActorProfile(uuid4(), 900, uuid4(), "Executive Office"),
        project_management=ActorProfile(uuid4(), 750, uuid4(), "Project Management"),
        admin=ActorProfile(uuid4(), 1000, uuid4(), "Executive Office"),
        staff=ActorProfile(uuid4(), 200, uuid4(), "Finance & Accounting"),
    )
    return Org(department_id=department_id, everyone=list(people.values()), **people)


@pytest.fixture
def identity(org) -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider(org.everyone)


@pytest.fixture
def documents() -> InMemoryDocumentProvider:
    return InMemoryDocumentProvider()


@pytest.fixture
def compliant_program() -> ComplianceProgram:
    return ComplianceProgram(
        id="CP-001",
        name="Vendor Onboarding",
        category="procurement",
        items=(
            ComplianceItem("Compliant", "Sanctions screening"),
            ComplianceItem("compliant", "Data processing agreement"),
        ),
    )


@pytest.fixture
def non_compliant_program() -> ComplianceProgram:
    return ComplianceProgram(
        id="CP-002",
        name="Export Controls",
        category="trade",
        items=(
            ComplianceItem("Compliant", "Classification"),
            ComplianceItem("In Progress", "License review"),
        ),
    )


@pytest.fixture
def compliance(compliant_program, non_compliant_program) -> InMemoryComplianceProvider:
    return InMemoryComplianceProvider([compliant_program, non_compliant_program])


# =============================================================================
# Database and service
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def routing_config():
    return get_active_config()


@pytest.fixture
def session_factory(tmp_path):
    """Fresh database per test; SQLite file unless DATABASE_URL is set."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"
    init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def service(session_factory, identity, documents, compliance, routing_config, clock):
    return ProjectApprovalService(
        session_factory,
        identity,
        documents=documents,
        compliance=compliance,
        config=routing_config,
        clock=clock,
        locks=ProjectLockRegistry(),
    )
