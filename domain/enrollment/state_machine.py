"""
Enrollment lifecycle state machine.

pending -> paid | payment_failed
payment_failed -> pending (retry)
paid -> confirmed | refunded
confirmed -> refunded | cancelled
refunded, cancelled: terminal

Confirming an already-confirmed enrollment is a no-op.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from .exceptions import InvalidTransitionException


class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[EnrollmentStatus, frozenset[EnrollmentStatus]] = {
    EnrollmentStatus.PENDING: frozenset({EnrollmentStatus.PAID, EnrollmentStatus.PAYMENT_FAILED}),
    EnrollmentStatus.PAYMENT_FAILED: frozenset({EnrollmentStatus.PENDING}),
    EnrollmentStatus.PAID: frozenset({EnrollmentStatus.CONFIRMED, EnrollmentStatus.REFUNDED}),
    EnrollmentStatus.CONFIRMED: frozenset({EnrollmentStatus.REFUNDED, EnrollmentStatus.CANCELLED}),
    EnrollmentStatus.REFUNDED: frozenset(),
    EnrollmentStatus.CANCELLED: frozenset(),
}

# Self-edges accepted as no-ops instead of errors
IDEMPOTENT_STATES = frozenset({EnrollmentStatus.CONFIRMED})

TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

PAYABLE_STATES = frozenset({EnrollmentStatus.PENDING, EnrollmentStatus.PAYMENT_FAILED})
REFUNDABLE_STATES = frozenset({EnrollmentStatus.PAID, EnrollmentStatus.CONFIRMED})


def can_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> bool:
    if current == target and current in IDEMPOTENT_STATES:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(
    current: EnrollmentStatus,
    target: EnrollmentStatus,
    *,
    enrollment_id: Optional[str] = None,
) -> bool:
    """Validate an edge.

    Returns True when the status actually changes and False for an
    idempotent self-edge. Raises InvalidTransitionException otherwise.
    """
    current = EnrollmentStatus(current)
    target = EnrollmentStatus(target)
    if not can_transition(current, target):
        raise InvalidTransitionException(current.value, target.value, enrollment_id=enrollment_id)
    return current != target


def is_terminal(status: EnrollmentStatus) -> bool:
    return EnrollmentStatus(status) in TERMINAL_STATES
