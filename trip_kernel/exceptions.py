"""
Typed exception hierarchy for the trip kernel.

Every error the workflow or ledger can raise has its own class, a
machine-readable ``code`` class attribute, and structured attributes, so
callers catch by type and map to API responses without parsing messages:

    try:
        coordinator.approve(request_id, actor_id, ActorRole.MANAGER)
    except NoPendingStepForActorError as e:
        respond(403, code=e.code, request_id=e.request_id)
    except RequestNotFoundError as e:
        respond(404, code=e.code)

Hierarchy:

    TripKernelError (base)
    |
    +-- WorkflowError
    |   +-- NoPendingStepForActorError
    |   +-- RequestNotFoundError
    |   +-- RequestAlreadyTerminalError
    |   +-- InvalidCustomStatusError
    |   +-- RequestNotApprovedError
    |
    +-- BudgetError
    |   +-- ProjectNotFoundError
    |   +-- InsufficientBudgetError
    |   +-- DuplicateAllocationError
    |   +-- LedgerReplayMismatchError
    |
    +-- HierarchyError
    |   +-- DepartmentNotFoundError
    |   +-- DepartmentCycleError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Error codes:

Category   | Code                        | When Raised
-----------|-----------------------------|---------------------------------------
Workflow   | NO_PENDING_STEP_FOR_ACTOR   | Actor may not act on the current step
           | REQUEST_NOT_FOUND           | Request id does not exist
           | REQUEST_ALREADY_TERMINAL    | Approve/reject on a resolved request
           | INVALID_CUSTOM_STATUS       | Unknown reject status (strict mode)
           | REQUEST_NOT_APPROVED        | Mark-paid before final approval
-----------|-----------------------------|---------------------------------------
Budget     | PROJECT_NOT_FOUND           | Project id does not exist
           | INSUFFICIENT_BUDGET         | Approval pre-check failed
           | DUPLICATE_ALLOCATION        | Second allocation for one request
           | LEDGER_REPLAY_MISMATCH      | Replayed balance != running balance
-----------|-----------------------------|---------------------------------------
Hierarchy  | DEPARTMENT_NOT_FOUND        | Department id does not exist
           | DEPARTMENT_CYCLE            | Parent link would create a cycle
-----------|-----------------------------|---------------------------------------
Immutable  | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a ledger/audit row
"""

from decimal import Decimal


class TripKernelError(Exception):
    """
    Base exception for all trip kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TRIP_KERNEL_ERROR"


# Workflow-related exceptions


class WorkflowError(TripKernelError):
    """Base exception for approval workflow errors."""

    code: str = "WORKFLOW_ERROR"


class NoPendingStepForActorError(WorkflowError):
    """The actor is not authorized to act on the request's current step.

    Recoverable; surfaced as a permission error and never retried.
    """

    code: str = "NO_PENDING_STEP_FOR_ACTOR"

    def __init__(self, request_id: str, actor_id: str, actor_role: str):
        self.request_id = request_id
        self.actor_id = actor_id
        self.actor_role = actor_role
        super().__init__(
            f"No pending workflow step on request {request_id} "
            f"for actor {actor_id} ({actor_role})"
        )


class RequestNotFoundError(WorkflowError):
    """Trip request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Trip request not found: {request_id}")


class RequestAlreadyTerminalError(WorkflowError):
    """Approve or reject was called on a request that is already resolved."""

    code: str = "REQUEST_ALREADY_TERMINAL"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Trip request {request_id} is already resolved with status '{status}'"
        )


class InvalidCustomStatusError(WorkflowError):
    """A reject call supplied a status outside the request status enumeration."""

    code: str = "INVALID_CUSTOM_STATUS"

    def __init__(self, request_id: str, custom_status: str):
        self.request_id = request_id
        self.custom_status = custom_status
        super().__init__(
            f"Invalid status '{custom_status}' supplied when rejecting {request_id}"
        )


class RequestNotApprovedError(WorkflowError):
    """Payment was recorded for a request that has not been fully approved."""

    code: str = "REQUEST_NOT_APPROVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Trip request {request_id} must be Approved to be marked paid "
            f"(current status '{status}')"
        )


# Budget-related exceptions


class BudgetError(TripKernelError):
    """Base exception for project budget ledger errors."""

    code: str = "BUDGET_ERROR"


class ProjectNotFoundError(BudgetError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class InsufficientBudgetError(BudgetError):
    """The project cannot afford the request's cost."""

    code: str = "INSUFFICIENT_BUDGET"

    def __init__(
        self,
        project_id: str,
        request_id: str,
        cost: Decimal,
        available: Decimal,
        excess: Decimal,
    ):
        self.project_id = project_id
        self.request_id = request_id
        self.cost = cost
        self.available = available
        self.excess = excess
        super().__init__(
            f"Project {project_id} cannot fund request {request_id}: "
            f"cost {cost} exceeds available {available} by {excess}"
        )


class DuplicateAllocationError(BudgetError):
    """A second allocation (or deallocation) was attempted for one reference."""

    code: str = "DUPLICATE_ALLOCATION"

    def __init__(self, reference_id: str, transaction_type: str):
        self.reference_id = reference_id
        self.transaction_type = transaction_type
        super().__init__(
            f"Ledger already holds a {transaction_type} entry for reference {reference_id}"
        )


class LedgerReplayMismatchError(BudgetError):
    """Replaying a project ledger does not reproduce its running balance."""

    code: str = "LEDGER_REPLAY_MISMATCH"

    def __init__(
        self,
        project_id: str,
        replayed: Decimal,
        running_balance: Decimal,
        formula: Decimal,
    ):
        self.project_id = project_id
        self.replayed = replayed
        self.running_balance = running_balance
        self.formula = formula
        super().__init__(
            f"Ledger replay mismatch for project {project_id}: replayed={replayed}, "
            f"running_balance={running_balance}, formula={formula}"
        )


# Hierarchy-related exceptions


class HierarchyError(TripKernelError):
    """Base exception for organizational hierarchy errors."""

    code: str = "HIERARCHY_ERROR"


class DepartmentNotFoundError(HierarchyError):
    """Department with given ID was not found."""

    code: str = "DEPARTMENT_NOT_FOUND"

    def __init__(self, department_id: str):
        self.department_id = department_id
        super().__init__(f"Department not found: {department_id}")


class DepartmentCycleError(HierarchyError):
    """Setting a department's parent would create a cycle."""

    code: str = "DEPARTMENT_CYCLE"

    def __init__(self, department_id: str, parent_department_id: str):
        self.department_id = department_id
        self.parent_department_id = parent_department_id
        super().__init__(
            f"Department {department_id} cannot have parent "
            f"{parent_department_id}: the hierarchy would cycle"
        )


# Immutability-related exceptions


class ImmutabilityError(TripKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries and audit records are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
