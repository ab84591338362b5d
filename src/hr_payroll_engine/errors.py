"""Error types raised by the calculation engines and lifecycles.

Every error carries a stable ``code`` so batch results and the HTTP layer
can report failures without depending on message text.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID


class PayrollEngineError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"


class ValidationError(PayrollEngineError):
    """Raised for malformed input (negative working days, missing refs, ...)."""

    code = "VALIDATION_ERROR"


class NotFoundError(PayrollEngineError):
    """Raised when a referenced record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class RateResolutionError(PayrollEngineError):
    """Raised when a Formula or Percentage rate cannot be resolved."""

    code = "RATE_RESOLUTION_ERROR"

    def __init__(self, rate_code: str, reason: str):
        self.rate_code = rate_code
        self.reason = reason
        super().__init__(f"Cannot resolve rate '{rate_code}': {reason}")


class ItemLocked(PayrollEngineError):
    """Raised when recomputation is attempted on a frozen item."""

    code = "ITEM_LOCKED"

    def __init__(self, item_id: UUID, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} is locked in status '{status}'")


class AlreadyPaid(PayrollEngineError):
    """Raised when a mutation is attempted on a paid or cancelled item."""

    code = "ALREADY_PAID"

    def __init__(self, item_id: UUID, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} cannot be modified in status '{status}'")


class InvalidTransition(PayrollEngineError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        reason: str | None = None,
        entity_id: UUID | None = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        self.entity_id = entity_id
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IncompleteChildren(PayrollEngineError):
    """Raised when a cycle transition is blocked by child item states."""

    code = "INCOMPLETE_CHILDREN"

    def __init__(self, cycle_id: UUID, to_status: str, item_ids: Iterable[UUID]):
        self.cycle_id = cycle_id
        self.to_status = to_status
        self.item_ids = list(item_ids)
        super().__init__(
            f"Cycle {cycle_id} cannot move to '{to_status}': "
            f"{len(self.item_ids)} item(s) not ready "
            f"({', '.join(str(i) for i in self.item_ids)})"
        )


class HasPaidItems(PayrollEngineError):
    """Raised when cancelling a cycle that already has paid items."""

    code = "HAS_PAID_ITEMS"

    def __init__(self, cycle_id: UUID, item_ids: Iterable[UUID]):
        self.cycle_id = cycle_id
        self.item_ids = list(item_ids)
        super().__init__(
            f"Cycle {cycle_id} has {len(self.item_ids)} paid item(s); "
            "acknowledge partial cancellation to proceed"
        )


class DuplicateItem(PayrollEngineError):
    """Raised when storage rejects a second item for the same owner/employee."""

    code = "DUPLICATE_ITEM"

    def __init__(self, owner_id: UUID, employee_id: UUID):
        self.owner_id = owner_id
        self.employee_id = employee_id
        super().__init__(f"Item for employee {employee_id} already exists in {owner_id}")


class AuthorizationRequired(PayrollEngineError):
    """Raised when a gated operation is invoked without authorization."""

    code = "AUTHORIZATION_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation '{operation}' requires an authorized approver")
