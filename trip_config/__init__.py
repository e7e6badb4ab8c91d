"""
trip_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files.  Returns a frozen ``WorkflowConfig``.

Architecture position:
    Configuration -- YAML-driven.  Sits above ``trip_kernel`` and
    ``trip_engines`` and below ``trip_services``.  The kernel MUST NEVER
    import from ``trip_config``; the coordinator passes the values it
    needs into the planner, snapshot and workflow engine explicitly.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- the document is missing its ``workflow`` section
      or carries an invalid value.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``TRIP_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each workflow decision to the configuration that
    governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from trip_config.loader import compute_checksum, load_workflow_config
from trip_config.schema import WorkflowConfig

_logger = logging.getLogger("trip_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration document.  Defaults
            to trip_config/sets/default.yaml.

    Returns:
        WorkflowConfig parsed from the document.

    Raises:
        FileNotFoundError: If the document does not exist.
        ValueError: If the document fails validation.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config = load_workflow_config(path)

    _logger.info(
        "TRIP_CONFIG_TRACE",
        extra={
            "trace_type": "TRIP_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "kilometer_threshold": str(config.kilometer_threshold),
            "distance_billed_category": config.distance_billed_category.value,
            "strict_custom_status": config.strict_custom_status,
            "enforce_budget_on_project_approval": config.enforce_budget_on_project_approval,
        },
    )
    return config


__all__ = [
    "WorkflowConfig",
    "compute_checksum",
    "get_active_config",
]
