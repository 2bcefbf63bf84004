#!/usr/bin/env python3
"""
Preview the approval chain a project would receive.

Loads the routing configuration (default set, APPROVAL_ROUTING_CONFIG, or
--config), validates it, and prints the band and ordered levels for the
given project attributes.  No database is touched.

Usage:
    python3 scripts/preview_chain.py external 2500000
    python3 scripts/preview_chain.py departmental 300000 --allocation
    python3 scripts/preview_chain.py personal 40000000 --allocation --role-level 1000
    python3 scripts/preview_chain.py --bands
"""

import argparse
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_config, resolve_config_path
from approval_engines import level_label, resolve_route
from approval_kernel.domain.approval import ProjectScope
from approval_kernel.exceptions import ConfigurationError


def print_bands(config) -> None:
    print(f"Bands ({config.config_id} v{config.config_version}):")
    lower = Decimal("0")
    for band in config.policy_table.bands:
        upper = "unbounded" if band.upper_bound is None else f"{band.upper_bound:,}"
        print(f"  {band.name:<10} {lower:>14,} .. {upper:<14} [{band.hint}]")
        if band.upper_bound is not None:
            lower = band.upper_bound


def preview(config, scope: ProjectScope, budget: Decimal, allocation: bool,
            role_level: int | None) -> None:
    band = config.policy_table.band_for(budget)
    route = resolve_route(
        scope,
        budget,
        allocation,
        submitter_role_level=role_level,
        table=config.policy_table,
    )
    print(f"Scope:      {scope.value}")
    print(f"Budget:     {budget:,}")
    print(f"Allocation: {'yes' if allocation else 'no'}")
    print(f"Band:       {band.name} [{band.hint}]")
    if not route:
        print("Chain:      (empty -- auto-approved at creation)")
        return
    print("Chain:")
    for position, step in enumerate(route, start=1):
        suffix = " (skipped)" if step.skipped else ""
        print(f"  {position}. {level_label(step.level)}{suffix}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Preview a project's approval chain")
    parser.add_argument("scope", nargs="?", choices=[s.value for s in ProjectScope])
    parser.add_argument("budget", nargs="?", help="Non-negative budget amount")
    parser.add_argument("--allocation", action="store_true",
                        help="Project requires company budget allocation")
    parser.add_argument("--role-level", type=int, default=None,
                        help="Submitter role level")
    parser.add_argument("--config", type=Path, default=None,
                        help="Routing configuration file")
    parser.add_argument("--bands", action="store_true", help="List budget bands")
    args = parser.parse_args()

    try:
        config = get_active_config(args.config)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"CONFIG ERROR ({resolve_config_path(args.config)}): {exc}")
        return 1

    if args.bands:
        print_bands(config)
        return 0

    if args.scope is None or args.budget is None:
        parser.error("scope and budget are required unless --bands is given")
    try:
        budget = Decimal(args.budget)
    except InvalidOperation:
        parser.error(f"invalid budget: {args.budget}")
    if budget < 0:
        parser.error("budget must be non-negative")

    preview(config, ProjectScope(args.scope), budget, args.allocation, args.role_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
