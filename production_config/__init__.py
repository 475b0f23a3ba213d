"""
production_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain workflow configuration at runtime through
    ``get_active_config()``: the machine types each step runs on, the
    privileged roles, and which roles may work which steps.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  This package sits
    above ``production_kernel`` and below ``production_services``.  The
    kernel MUST NEVER import from ``production_config``; ``bridges`` turns a
    ``WorkflowConfig`` into kernel policy objects.

Failure modes:
    - ``FileNotFoundError`` -- configuration file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ConfigurationError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PRODUCTION_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying shop-floor decisions to the rules in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from production_config.bridges import build_access_policy, build_machine_type_rules
from production_config.loader import load_yaml_file, parse_config
from production_config.schema import RoleSets, WorkflowConfig

__all__ = [
    "RoleSets",
    "WorkflowConfig",
    "build_access_policy",
    "build_machine_type_rules",
    "get_active_config",
]

_logger = logging.getLogger("production_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to production_config/sets/default.yaml.

    Returns:
        A frozen, validated WorkflowConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If validation fails.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path), source=str(path))

    _logger.info(
        "PRODUCTION_CONFIG_TRACE",
        extra={
            "trace_type": "PRODUCTION_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "role_permission_count": len(config.role_step_permissions),
        },
    )
    return config
