"""
RoutingConfig schema.

Defines the human-authored, reviewable source artifact for approval
routing.  YAML files are parsed into these types by the loader and
compiled into a ``CompiledRoutingConfig`` by ``approval_config``.

Key distinction:
  RoutingConfig          = source artifact (human-authored, versioned)
  CompiledRoutingConfig  = runtime artifact (PolicyTable + AuthorizationPolicy)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteStepDef:
    """One level of a configured route."""

    level: str
    skipped: bool = False


@dataclass(frozen=True)
class RouteDef:
    """Ordered levels for one (scope, budget-allocation) combination."""

    scope: str
    requires_budget_allocation: bool
    steps: tuple[RouteStepDef, ...] = ()


@dataclass(frozen=True)
class BandDef:
    """A budget band. ``upper_bound`` is inclusive; None is the open top band."""

    name: str
    upper_bound: Decimal | None
    routes: tuple[RouteDef, ...] = ()
    hint: str = ""


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoutingConfig:
    """Root routing configuration artifact."""

    config_id: str
    version: int
    top_privilege_level: int
    hod_threshold: int
    bands: tuple[BandDef, ...]
    immediate_execution_scopes: tuple[str, ...] = ()
    department_names: dict[str, str] = field(default_factory=dict)
    checksum: str = ""
