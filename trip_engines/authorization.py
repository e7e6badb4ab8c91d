"""
trip_engines.authorization -- Who may act on a workflow step.

Responsibility:
    Decide whether an acting user may act on a given step.  Identity-bound
    steps admit only their approver; the role-bound finance step admits
    the Finance and Admin roles; Admin may always act.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import trip_kernel/domain/ types.

Invariants enforced:
    - Role-bound steps other than Finance Approval admit nobody except
      Admin (reserved for future role-based step types).
    - Purity: no clock access, no I/O, no database.
"""

from __future__ import annotations

from uuid import UUID

from trip_kernel.domain.workflow import (
    FINANCE_ROLES,
    ActorRole,
    IdentityApprover,
    RoleApprover,
    StepType,
    WorkflowStep,
)


def can_act(step: WorkflowStep, actor_id: UUID, actor_role: ActorRole) -> bool:
    """True if *actor_id* acting as *actor_role* may act on *step*."""
    if actor_role == ActorRole.ADMIN:
        return True
    if isinstance(step.approver, IdentityApprover):
        return step.approver.user_id == actor_id
    if isinstance(step.approver, RoleApprover) and step.step_type == StepType.FINANCE_APPROVAL:
        return actor_role in FINANCE_ROLES
    return False


def matches_approver(step: WorkflowStep, actor_id: UUID, actor_role: ActorRole) -> bool:
    """True if the step is assigned to this actor (no administrative override).

    Identity steps match their approver; the role-bound finance step
    matches Finance and Admin.  Used to select the step an approval
    applies to.
    """
    if isinstance(step.approver, IdentityApprover):
        return step.approver.user_id == actor_id
    return step.step_type == StepType.FINANCE_APPROVAL and actor_role in FINANCE_ROLES


class AuthorizationResolver:
    """Injectable wrapper over :func:`can_act`.

    Held by the workflow engine and the visibility selector so tests and
    deployments can substitute a different policy.
    """

    def can_act(self, step: WorkflowStep, actor_id: UUID, actor_role: ActorRole) -> bool:
        return can_act(step, actor_id, actor_role)

    def matches_approver(
        self, step: WorkflowStep, actor_id: UUID, actor_role: ActorRole,
    ) -> bool:
        return matches_approver(step, actor_id, actor_role)
