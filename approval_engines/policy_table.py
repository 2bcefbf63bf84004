"""
approval_engines.policy_table -- Budget-band routing table.

Responsibility:
    Map (scope, budget, requires_budget_allocation) to the ordered list of
    approval levels a project must pass.  All combinations are table data;
    there are no nested conditionals per band.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Bands are matched by inclusive upper bound, lowest band first.
    - A submitter at or above ``top_privilege_level`` is exempt from all
      routing (empty chain).
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError for a negative budget (callers validate before routing).
    - ValueError when the table has no band for the budget (only possible
      with a hand-built table; configured tables are validated on load).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from approval_kernel.domain.approval import ApprovalLevel, ProjectScope

RouteKey = tuple[ProjectScope, bool]


@dataclass(frozen=True)
class RouteStep:
    """One level of a route. ``skipped`` steps are produced by policy only."""

    level: ApprovalLevel
    skipped: bool = False


@dataclass(frozen=True)
class BudgetBand:
    """A budget band with its routes.

    ``upper_bound`` is inclusive; ``None`` marks the open top band.
    ``hint`` is cosmetic and has no routing effect.
    """

    name: str
    upper_bound: Decimal | None
    routes: Mapping[RouteKey, tuple[RouteStep, ...]] = field(default_factory=dict)
    hint: str = ""

    def covers(self, budget: Decimal) -> bool:
        return self.upper_bound is None or budget <= self.upper_bound


@dataclass(frozen=True)
class PolicyTable:
    """Ordered budget bands plus the routing exemption tier."""

    bands: tuple[BudgetBand, ...]
    top_privilege_level: int = 1000

    def band_for(self, budget: Decimal) -> BudgetBand:
        """Return the first band whose inclusive upper bound covers ``budget``."""
        if budget < 0:
            raise ValueError(f"Budget must be non-negative, got {budget}")
        for band in self.bands:
            if band.covers(budget):
                return band
        raise ValueError(f"No budget band covers {budget}")

    def route(
        self,
        scope: ProjectScope,
        budget: Decimal,
        requires_budget_allocation: bool,
    ) -> tuple[RouteStep, ...]:
        band = self.band_for(budget)
        return tuple(band.routes.get((scope, bool(requires_budget_allocation)), ()))


def standard_routes() -> dict[RouteKey, tuple[RouteStep, ...]]:
    """The routes every default band uses."""
    finance_exec = (
        RouteStep(ApprovalLevel.FINANCE),
        RouteStep(ApprovalLevel.EXECUTIVE),
    )
    routes: dict[RouteKey, tuple[RouteStep, ...]] = {}
    for scope in (ProjectScope.PERSONAL, ProjectScope.DEPARTMENTAL):
        # No allocation requested: auto-approved
        routes[(scope, False)] = ()
        routes[(scope, True)] = finance_exec
    routes[(ProjectScope.EXTERNAL, False)] = (
        RouteStep(ApprovalLevel.LEGAL_COMPLIANCE),
        RouteStep(ApprovalLevel.EXECUTIVE),
    )
    routes[(ProjectScope.EXTERNAL, True)] = (
        RouteStep(ApprovalLevel.LEGAL_COMPLIANCE),
        *finance_exec,
    )
    return routes


# elevated and major route identically; only the hint differs.
DEFAULT_POLICY_TABLE = PolicyTable(
    bands=(
        BudgetBand("standard", Decimal("1000000"), standard_routes(), "green"),
        BudgetBand("elevated", Decimal("5000000"), standard_routes(), "yellow"),
        BudgetBand("major", Decimal("25000000"), standard_routes(), "orange"),
        BudgetBand("strategic", None, standard_routes(), "red"),
    ),
    top_privilege_level=1000,
)


def resolve_route(
    scope: ProjectScope,
    budget: Decimal,
    requires_budget_allocation: bool = False,
    *,
    submitter_role_level: int | None = None,
    table: PolicyTable = DEFAULT_POLICY_TABLE,
) -> tuple[RouteStep, ...]:
    """Resolve the ordered route, including policy-skipped steps."""
    budget = Decimal(budget)
    if budget < 0:
        raise ValueError(f"Budget must be non-negative, got {budget}")
    if (
        submitter_role_level is not None
        and submitter_role_level >= table.top_privilege_level
    ):
        return ()
    return table.route(scope, budget, requires_budget_allocation)


def resolve_levels(
    scope: ProjectScope,
    budget: Decimal,
    requires_budget_allocation: bool = False,
    *,
    submitter_role_level: int | None = None,
    table: PolicyTable = DEFAULT_POLICY_TABLE,
) -> tuple[ApprovalLevel, ...]:
    """Ordered approval levels for a project.

    Args:
        scope: Project scope.
        budget: Non-negative budget in the reference currency.
        requires_budget_allocation: Whether the project draws on company funds.
        submitter_role_level: Role level of the submitter, if known.
        table: Policy table to route with.

    Returns:
        Tuple of levels in chain order (empty means auto-approved).
    """
    return tuple(
        step.level
        for step in resolve_route(
            scope,
            budget,
            requires_budget_allocation,
            submitter_role_level=submitter_role_level,
            table=table,
        )
    )
