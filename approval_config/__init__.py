"""
approval_config -- single public entrypoint for routing configuration.

Responsibility:
    Provides the runtime way to obtain routing configuration through
    ``get_active_config()``.  Returns a ``CompiledRoutingConfig`` holding
    the policy table and authorization policy the service runs with.

Architecture position:
    Configuration -- YAML-driven routing tables, load-time validation.
    Sits above ``approval_kernel`` and ``approval_engines`` and below the
    service layer.  The kernel MUST NEVER import from ``approval_config``.

Invariants enforced:
    - Load-time validation: a file that fails validation never produces a
      compiled config.
    - Deterministic compilation: the same YAML always produces the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ConfigurationError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``config_loaded`` log entry with the config id, version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from approval_config.compiler import CompiledRoutingConfig, compile_routing_config
from approval_config.loader import load_routing_config

_logger = logging.getLogger("approval_kernel.config")

CONFIG_ENV_VAR = "APPROVAL_ROUTING_CONFIG"

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"


def resolve_config_path(path: Path | str | None = None) -> Path:
    """Explicit path, else ``APPROVAL_ROUTING_CONFIG``, else the default set."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def get_active_config(path: Path | str | None = None) -> CompiledRoutingConfig:
    """Load, validate and compile the active routing configuration.

    Args:
        path: Optional explicit file; see ``resolve_config_path``.

    Raises:
        FileNotFoundError: The resolved file does not exist.
        ConfigurationError: The file failed validation.
    """
    config_path = resolve_config_path(path)
    compiled = compile_routing_config(load_routing_config(config_path))

    _logger.info(
        "config_loaded",
        extra={
            "config_id": compiled.config_id,
            "config_version": compiled.config_version,
            "checksum": compiled.checksum,
            "source": str(config_path),
            "band_count": len(compiled.policy_table.bands),
        },
    )
    return compiled


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "CompiledRoutingConfig",
    "compile_routing_config",
    "get_active_config",
    "resolve_config_path",
]
