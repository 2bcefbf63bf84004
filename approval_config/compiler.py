"""
Configuration Compiler -- RoutingConfig -> CompiledRoutingConfig.

Turns the validated source artifact into the engine inputs the service
runs with: a ``PolicyTable`` and an ``AuthorizationPolicy``.  The compiled
object is frozen; changing routing means loading a new file.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType

from approval_config.schema import BandDef, RoutingConfig
from approval_engines.authorization import AuthorizationPolicy
from approval_engines.policy_table import BudgetBand, PolicyTable, RouteStep
from approval_kernel.domain.approval import ApprovalLevel, ProjectScope


@dataclass(frozen=True)
class CompiledRoutingConfig:
    """Runtime routing artifact."""

    config_id: str
    config_version: int
    checksum: str
    policy_table: PolicyTable
    authorization: AuthorizationPolicy
    immediate_execution_scopes: frozenset[ProjectScope]

    def band_limits(self) -> dict[str, Decimal | None]:
        """Band name to inclusive upper bound, lowest first."""
        return {band.name: band.upper_bound for band in self.policy_table.bands}


def _compile_band(band: BandDef) -> BudgetBand:
    routes = {
        (ProjectScope(route.scope), route.requires_budget_allocation): tuple(
            RouteStep(ApprovalLevel(step.level), skipped=step.skipped)
            for step in route.steps
        )
        for route in band.routes
    }
    return BudgetBand(
        name=band.name,
        upper_bound=band.upper_bound,
        routes=MappingProxyType(routes),
        hint=band.hint,
    )


def compile_routing_config(config: RoutingConfig) -> CompiledRoutingConfig:
    """Compile a loaded ``RoutingConfig``."""
    table = PolicyTable(
        bands=tuple(_compile_band(band) for band in config.bands),
        top_privilege_level=config.top_privilege_level,
    )
    authorization = AuthorizationPolicy(
        hod_threshold=config.hod_threshold,
        top_privilege_level=config.top_privilege_level,
        level_departments=MappingProxyType({
            ApprovalLevel(level): name
            for level, name in config.department_names.items()
        }),
    )
    return CompiledRoutingConfig(
        config_id=config.config_id,
        config_version=config.version,
        checksum=config.checksum,
        policy_table=table,
        authorization=authorization,
        immediate_execution_scopes=frozenset(
            ProjectScope(scope) for scope in config.immediate_execution_scopes
        ),
    )
