"""
Configuration Loader (``trip_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into a frozen
``WorkflowConfig``.  Callers obtain configuration through
``trip_config.get_active_config()``; this module is its implementation.

Architecture position
---------------------
**Config layer**.  Depends on ``trip_kernel.domain`` value types only.
The kernel never imports this package.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``workflow`` section or bad values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from trip_config.schema import WorkflowConfig
from trip_kernel.domain.workflow import TripCategory


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of *data*."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a YAML number or string into Decimal without float rounding."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name} must be a number, got {value!r}") from exc


def parse_category(value: Any) -> TripCategory:
    try:
        return TripCategory(value)
    except ValueError as exc:
        allowed = ", ".join(c.value for c in TripCategory)
        raise ValueError(
            f"distance_billed_category must be one of {allowed}, got {value!r}"
        ) from exc


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """
    Parse a ``WorkflowConfig`` from a loaded document.

    Absent keys take the dataclass defaults; the ``workflow`` section
    itself is required.
    """
    if "workflow" not in data:
        raise ValueError("Configuration document has no 'workflow' section")
    section = data["workflow"] or {}
    defaults = WorkflowConfig()

    return WorkflowConfig(
        kilometer_threshold=parse_decimal(
            section.get("kilometer_threshold", defaults.kilometer_threshold),
            "kilometer_threshold",
        ),
        distance_billed_category=parse_category(
            section.get("distance_billed_category", defaults.distance_billed_category.value),
        ),
        strict_custom_status=bool(
            section.get("strict_custom_status", defaults.strict_custom_status),
        ),
        enforce_budget_on_project_approval=bool(
            section.get(
                "enforce_budget_on_project_approval",
                defaults.enforce_budget_on_project_approval,
            ),
        ),
        config_id=str(data.get("config_id", defaults.config_id)),
        version=int(data.get("version", defaults.version)),
        checksum=compute_checksum(data),
    )


def load_workflow_config(path: Path) -> WorkflowConfig:
    """Load and parse the document at *path*."""
    return parse_workflow_config(load_yaml_file(path))
