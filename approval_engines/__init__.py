"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    routing engines.  This is the canonical import surface for the service
    and HTTP layers.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain (and sibling engine modules).
    MUST NOT import approval_kernel.services, approval_config or
    approval_services.

Invariants enforced:
    - Purity: engines never read the clock.  ``now`` is passed in by the
      service.
    - Decimal-only budgets.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines import build_chain, approve, progress
"""

from approval_kernel.logging_config import get_logger

logger = get_logger("engines")

from approval_engines.authorization import (
    DEFAULT_AUTHORIZATION_POLICY,
    DEFAULT_LEVEL_DEPARTMENTS,
    AuthorizationPolicy,
    authorization_denial_reason,
    can_act,
)
from approval_engines.chain_builder import (
    ChainBuild,
    build_chain,
    status_for_chain,
    terminal_status,
)
from approval_engines.policy_table import (
    DEFAULT_POLICY_TABLE,
    BudgetBand,
    PolicyTable,
    RouteStep,
    resolve_levels,
    resolve_route,
    standard_routes,
)
from approval_engines.progress import (
    current_level_label,
    document_status,
    level_label,
    percentage,
    preserved_approvals,
    progress,
    workflow_status,
)
from approval_engines.state_machine import (
    approve,
    cancel,
    chain_order_violations,
    check_compliance_program,
    missing_document_types,
    open_project,
    reject,
    rejection_point_index,
    resubmit,
    transition_step,
)

__all__ = [
    "DEFAULT_AUTHORIZATION_POLICY",
    "DEFAULT_LEVEL_DEPARTMENTS",
    "DEFAULT_POLICY_TABLE",
    "AuthorizationPolicy",
    "BudgetBand",
    "ChainBuild",
    "PolicyTable",
    "RouteStep",
    "approve",
    "authorization_denial_reason",
    "build_chain",
    "can_act",
    "cancel",
    "chain_order_violations",
    "check_compliance_program",
    "current_level_label",
    "document_status",
    "level_label",
    "missing_document_types",
    "open_project",
    "percentage",
    "preserved_approvals",
    "progress",
    "reject",
    "rejection_point_index",
    "resolve_levels",
    "resolve_route",
    "resubmit",
    "standard_routes",
    "status_for_chain",
    "terminal_status",
    "transition_step",
    "workflow_status",
]
