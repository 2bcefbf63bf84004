"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a routing YAML file, validates it, and parses it into
``approval_config.schema`` dataclass instances.  Runtime callers go
through ``approval_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Imports kernel domain enums
for validation only; has no dependency on engines or services.

Invariants enforced
-------------------
* Every level, scope and band in the file is validated before parsing; all
  problems are reported together in one ``ConfigurationError``.
* Bands are strictly increasing by upper bound and end with an open band,
  so every non-negative budget is covered.
* Every band defines all six (scope, budget-allocation) routes.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural or semantic problems  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import BandDef, RouteDef, RouteStepDef, RoutingConfig
from approval_kernel.domain.approval import ApprovalLevel, ProjectScope
from approval_kernel.exceptions import ConfigurationError

_LEVELS = frozenset(level.value for level in ApprovalLevel)
_SCOPES = frozenset(scope.value for scope in ProjectScope)
_REQUIRED_KEYS = ("config_id", "version", "bands")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a band bound. ``None`` (YAML ``null``) means unbounded."""
    if value is None:
        return None
    if isinstance(value, float):
        # YAML floats lose precision; go through str
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Cannot parse amount from {value!r}") from exc


def parse_route_step(data: Any) -> RouteStepDef:
    """A route step is a bare level name or ``{level, skipped}``."""
    if isinstance(data, str):
        return RouteStepDef(level=data)
    return RouteStepDef(level=data["level"], skipped=bool(data.get("skipped", False)))


def parse_route(data: dict[str, Any]) -> RouteDef:
    return RouteDef(
        scope=data["scope"],
        requires_budget_allocation=bool(data.get("budget_allocation", False)),
        steps=tuple(parse_route_step(s) for s in data.get("levels") or ()),
    )


def parse_band(data: dict[str, Any]) -> BandDef:
    return BandDef(
        name=data["name"],
        upper_bound=parse_decimal(data.get("upper_bound")),
        routes=tuple(parse_route(r) for r in data.get("routes") or ()),
        hint=data.get("hint", ""),
    )


def parse_routing_config(data: dict[str, Any], checksum: str = "") -> RoutingConfig:
    """
    Parse a ``RoutingConfig`` from a validated dict.

    Preconditions:
        - ``data`` has passed ``validate_routing_data``.
    """
    return RoutingConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        top_privilege_level=int(data.get("top_privilege_level", 1000)),
        hod_threshold=int(data.get("hod_threshold", 700)),
        bands=tuple(parse_band(b) for b in data["bands"]),
        immediate_execution_scopes=tuple(data.get("immediate_execution_scopes") or ()),
        department_names=dict(data.get("department_names") or {}),
        checksum=checksum,
    )


def validate_routing_data(data: dict[str, Any]) -> list[str]:
    """Return every problem found in raw routing data (empty when valid)."""
    errors: list[str] = []
    for key in _REQUIRED_KEYS:
        if key not in data:
            errors.append(f"missing required key '{key}'")
    if errors:
        return errors

    top = data.get("top_privilege_level", 1000)
    hod = data.get("hod_threshold", 700)
    if not isinstance(top, int) or not isinstance(hod, int):
        errors.append("top_privilege_level and hod_threshold must be integers")
    elif not 0 < hod <= top:
        errors.append(
            f"hod_threshold ({hod}) must be positive and not exceed "
            f"top_privilege_level ({top})"
        )

    for scope in data.get("immediate_execution_scopes") or ():
        if scope not in _SCOPES:
            errors.append(f"immediate_execution_scopes: unknown scope '{scope}'")

    departments = data.get("department_names") or {}
    for level in departments:
        if level not in _LEVELS:
            errors.append(f"department_names: unknown level '{level}'")

    bands = data["bands"]
    if not isinstance(bands, list) or not bands:
        errors.append("bands must be a non-empty list")
        return errors

    names: set[str] = set()
    previous: Decimal | None = None
    for position, band in enumerate(bands):
        if not isinstance(band, dict):
            errors.append(f"band #{position}: must be a mapping")
            continue
        name = band.get("name")
        label = f"band '{name}'" if name else f"band #{position}"
        if not name:
            errors.append(f"{label}: missing name")
        elif name in names:
            errors.append(f"{label}: duplicate band name")
        names.add(name)

        try:
            bound = parse_decimal(band.get("upper_bound"))
        except ValueError as exc:
            errors.append(f"{label}: {exc}")
            continue
        is_last = position == len(bands) - 1
        if bound is None and not is_last:
            errors.append(f"{label}: only the last band may be open")
        if bound is not None and is_last:
            errors.append(f"{label}: last band must be open (upper_bound: null)")
        if bound is not None:
            if bound < 0:
                errors.append(f"{label}: upper_bound must be non-negative")
            if previous is not None and bound <= previous:
                errors.append(f"{label}: upper_bound must exceed the previous band")
            previous = bound

        errors.extend(_validate_routes(label, band.get("routes") or [], departments))
    return errors


def _validate_routes(
    label: str,
    routes: list[Any],
    departments: dict[str, str],
) -> list[str]:
    errors: list[str] = []
    seen: set[tuple[str, bool]] = set()
    for route in routes:
        if not isinstance(route, dict):
            errors.append(f"{label}: route must be a mapping")
            continue
        scope = route.get("scope")
        if scope not in _SCOPES:
            errors.append(f"{label}: unknown scope '{scope}'")
            continue
        key = (scope, bool(route.get("budget_allocation", False)))
        if key in seen:
            errors.append(f"{label}: duplicate route for {key}")
        seen.add(key)
        for step in route.get("levels") or ():
            level = step if isinstance(step, str) else (step or {}).get("level")
            if level not in _LEVELS:
                errors.append(f"{label}: unknown level '{level}'")
            elif level != ApprovalLevel.HOD.value and departments and level not in departments:
                errors.append(f"{label}: no department configured for level '{level}'")

    for scope in sorted(_SCOPES):
        for flag in (False, True):
            if (scope, flag) not in seen:
                errors.append(
                    f"{label}: missing route for scope '{scope}' "
                    f"with budget_allocation={str(flag).lower()}"
                )
    return errors


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_routing_config(path: Path) -> RoutingConfig:
    """Load, validate and parse a routing configuration file."""
    data = load_yaml_file(path)
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), ("top level must be a mapping",))
    errors = validate_routing_data(data)
    if errors:
        raise ConfigurationError(str(path), tuple(errors))
    return parse_routing_config(data, checksum=compute_checksum(data))
