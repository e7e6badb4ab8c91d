"""
WorkflowConfig schema (``trip_config.schema``).

The frozen runtime configuration the transaction coordinator is built
with.  The loader parses YAML into this type; nothing else constructs it
from files.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from trip_kernel.domain.workflow import TripCategory


@dataclass(frozen=True)
class WorkflowConfig:
    """Workflow and budget policy knobs.

    Attributes:
        kilometer_threshold: Distance above which a distance-billed trip
            requires the tertiary department manager.
        distance_billed_category: Trip category the distance rule applies to.
        strict_custom_status: Raise on an unknown reject status instead of
            falling back to Rejected.
        enforce_budget_on_project_approval: Check affordability before the
            first project-manager approval allocates budget.
        config_id: Identifier of the source document.
        version: Version of the source document.
        checksum: SHA-256 of the source document ("" when built in code).
    """

    kilometer_threshold: Decimal = Decimal("50")
    distance_billed_category: TripCategory = TripCategory.TICKET
    strict_custom_status: bool = False
    enforce_budget_on_project_approval: bool = True
    config_id: str = "default"
    version: int = 1
    checksum: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.kilometer_threshold, Decimal):
            raise ValueError(
                f"kilometer_threshold must be Decimal, got {type(self.kilometer_threshold).__name__}"
            )
        if self.kilometer_threshold < 0:
            raise ValueError(
                f"kilometer_threshold cannot be negative: {self.kilometer_threshold}"
            )
        if not isinstance(self.distance_billed_category, TripCategory):
            raise ValueError(
                f"Unknown distance_billed_category: {self.distance_billed_category!r}"
            )
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")
