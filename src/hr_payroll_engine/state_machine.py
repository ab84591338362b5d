"""Status state machines for payroll and benefit records."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

from hr_payroll_engine.errors import InvalidTransition


def _value(status: str | Enum) -> str:
    return status.value if isinstance(status, Enum) else status


class PayrollItemStatus(str, Enum):
    DRAFT = "draft"
    PROCESSED = "processed"
    FINALIZED = "finalized"
    PAID = "paid"


class PayrollPeriodStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PAID = "paid"


class BenefitCycleStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RELEASED = "released"
    CANCELLED = "cancelled"


class BenefitItemStatus(str, Enum):
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class StateMachine:
    """Table-driven status transitions.

    Subclasses declare ``VALID_TRANSITIONS`` as {from_status: [to_statuses]}
    keyed by plain string values.
    """

    VALID_TRANSITIONS: ClassVar[dict[str, list[str]]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(_value(from_status), [])
        return _value(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransition if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransition(_value(from_status), _value(to_status))

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(_value(current_status), []))

    @classmethod
    def sources_for(cls, to_status: str) -> list[str]:
        """Statuses from which ``to_status`` is reachable."""
        target = _value(to_status)
        return [src for src, dests in cls.VALID_TRANSITIONS.items() if target in dests]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(_value(status))


class PayrollItemStateMachine(StateMachine):
    """Payroll item transitions.

    - draft → processed (compute)
    - processed → processed (recalculate)
    - processed → finalized
    - finalized → paid
    - finalized → draft (reopen, parent period not paid)
    """

    VALID_TRANSITIONS = {
        PayrollItemStatus.DRAFT.value: [PayrollItemStatus.PROCESSED.value],
        PayrollItemStatus.PROCESSED.value: [
            PayrollItemStatus.PROCESSED.value,
            PayrollItemStatus.FINALIZED.value,
        ],
        PayrollItemStatus.FINALIZED.value: [
            PayrollItemStatus.PAID.value,
            PayrollItemStatus.DRAFT.value,
        ],
        PayrollItemStatus.PAID.value: [],
    }

    # Statuses where lines may be rebuilt
    CALCULATION_ALLOWED = frozenset(
        {PayrollItemStatus.DRAFT.value, PayrollItemStatus.PROCESSED.value}
    )

    # Statuses where lines and totals are frozen
    RESULTS_IMMUTABLE = frozenset(
        {PayrollItemStatus.FINALIZED.value, PayrollItemStatus.PAID.value}
    )

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return _value(status) in cls.CALCULATION_ALLOWED

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return _value(status) in cls.RESULTS_IMMUTABLE

    @classmethod
    def is_reopen(cls, from_status: str, to_status: str) -> bool:
        return (
            _value(from_status) == PayrollItemStatus.FINALIZED.value
            and _value(to_status) == PayrollItemStatus.DRAFT.value
        )


class PayrollPeriodStateMachine(StateMachine):
    """Payroll period transitions.

    - draft → processing (first item computed)
    - processing → completed (every item finalized or paid)
    - completed → paid (every item paid)
    - completed → processing (an item was reopened)
    """

    VALID_TRANSITIONS = {
        PayrollPeriodStatus.DRAFT.value: [PayrollPeriodStatus.PROCESSING.value],
        PayrollPeriodStatus.PROCESSING.value: [PayrollPeriodStatus.COMPLETED.value],
        PayrollPeriodStatus.COMPLETED.value: [
            PayrollPeriodStatus.PAID.value,
            PayrollPeriodStatus.PROCESSING.value,
        ],
        PayrollPeriodStatus.PAID.value: [],
    }

    ACCEPTS_COMPUTATION = frozenset(
        {PayrollPeriodStatus.DRAFT.value, PayrollPeriodStatus.PROCESSING.value}
    )

    @classmethod
    def can_compute(cls, status: str) -> bool:
        return _value(status) in cls.ACCEPTS_COMPUTATION


class BenefitCycleStateMachine(StateMachine):
    """Benefit cycle transitions.

    - draft → processing
    - processing → completed (every eligible item calculated or later)
    - completed → released (every eligible item approved or paid)
    - any non-released status → cancelled
    """

    VALID_TRANSITIONS = {
        BenefitCycleStatus.DRAFT.value: [
            BenefitCycleStatus.PROCESSING.value,
            BenefitCycleStatus.CANCELLED.value,
        ],
        BenefitCycleStatus.PROCESSING.value: [
            BenefitCycleStatus.COMPLETED.value,
            BenefitCycleStatus.CANCELLED.value,
        ],
        BenefitCycleStatus.COMPLETED.value: [
            BenefitCycleStatus.RELEASED.value,
            BenefitCycleStatus.CANCELLED.value,
        ],
        BenefitCycleStatus.RELEASED.value: [],
        BenefitCycleStatus.CANCELLED.value: [],
    }

    ACCEPTS_CALCULATION = frozenset(
        {BenefitCycleStatus.DRAFT.value, BenefitCycleStatus.PROCESSING.value}
    )

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return _value(status) in cls.ACCEPTS_CALCULATION


class BenefitItemStateMachine(StateMachine):
    """Benefit item transitions.

    - draft → calculated
    - calculated → calculated (recompute)
    - calculated → approved (authorized, eligible only)
    - approved → paid
    - draft/calculated/approved → cancelled
    - cancelled → calculated (recompute revives the item)
    """

    VALID_TRANSITIONS = {
        BenefitItemStatus.DRAFT.value: [
            BenefitItemStatus.CALCULATED.value,
            BenefitItemStatus.CANCELLED.value,
        ],
        BenefitItemStatus.CALCULATED.value: [
            BenefitItemStatus.CALCULATED.value,
            BenefitItemStatus.APPROVED.value,
            BenefitItemStatus.CANCELLED.value,
        ],
        BenefitItemStatus.APPROVED.value: [
            BenefitItemStatus.PAID.value,
            BenefitItemStatus.CANCELLED.value,
        ],
        BenefitItemStatus.PAID.value: [],
        BenefitItemStatus.CANCELLED.value: [BenefitItemStatus.CALCULATED.value],
    }

    # Statuses where the computed amount is frozen
    RESULTS_IMMUTABLE = frozenset(
        {BenefitItemStatus.APPROVED.value, BenefitItemStatus.PAID.value}
    )

    # Statuses that accept ledger adjustments
    ADJUSTABLE = frozenset(
        {
            BenefitItemStatus.DRAFT.value,
            BenefitItemStatus.CALCULATED.value,
            BenefitItemStatus.APPROVED.value,
        }
    )

    # Minimum item status per cycle target, for eligible non-cancelled items
    REQUIRED_FOR_CYCLE = {
        BenefitCycleStatus.COMPLETED.value: frozenset(
            {
                BenefitItemStatus.CALCULATED.value,
                BenefitItemStatus.APPROVED.value,
                BenefitItemStatus.PAID.value,
            }
        ),
        BenefitCycleStatus.RELEASED.value: frozenset(
            {BenefitItemStatus.APPROVED.value, BenefitItemStatus.PAID.value}
        ),
    }

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return _value(status) in cls.RESULTS_IMMUTABLE

    @classmethod
    def can_adjust(cls, status: str) -> bool:
        return _value(status) in cls.ADJUSTABLE
