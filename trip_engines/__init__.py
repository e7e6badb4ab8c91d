"""
Module: trip_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: workflow planning, authorization, workflow state
    rules and budget arithmetic.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import trip_kernel/domain, trip_kernel.exceptions and
    trip_kernel.logging_config (and sibling engine modules).
    MUST NOT import trip_kernel db/models/services/selectors, trip_config
    or trip_services.

Invariants enforced:
    - Purity: engines never call ``datetime.now()``; timestamps are passed
      in by the caller.
    - Decimal-only arithmetic for costs and budgets.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from trip_engines.planner import WorkflowPlanner
    from trip_engines.authorization import AuthorizationResolver
    from trip_engines.workflow import derive_status
"""

from trip_kernel.logging_config import get_logger

logger = get_logger("engines")

from trip_engines.authorization import (  # noqa: E402
    AuthorizationResolver,
    can_act,
    matches_approver,
)
from trip_engines.budget import (  # noqa: E402
    AffordabilityAssessment,
    assess_affordability,
    available_budget,
    net_allocation_for_reference,
    replay_balance,
    utilization_pct,
)
from trip_engines.planner import (  # noqa: E402
    WorkflowPlan,
    WorkflowPlanner,
    initial_status,
    needs_tertiary_approval,
    plan_workflow,
)
from trip_engines.workflow import (  # noqa: E402
    apply_approval,
    closes_current_step,
    derive_status,
    first_pending_step,
    pending_steps,
    requires_allocation,
    resolve_rejection_status,
    select_step_for_actor,
    status_for_step,
)

__all__ = [
    "AffordabilityAssessment",
    "AuthorizationResolver",
    "WorkflowPlan",
    "WorkflowPlanner",
    "apply_approval",
    "assess_affordability",
    "available_budget",
    "can_act",
    "closes_current_step",
    "derive_status",
    "first_pending_step",
    "initial_status",
    "matches_approver",
    "needs_tertiary_approval",
    "net_allocation_for_reference",
    "pending_steps",
    "plan_workflow",
    "replay_balance",
    "requires_allocation",
    "resolve_rejection_status",
    "select_step_for_actor",
    "status_for_step",
    "utilization_pct",
]
