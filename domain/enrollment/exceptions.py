"""
Enrollment domain exceptions.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException, ResourceNotFoundException
from shared.codes import BusinessCode


class EnrollmentNotFoundException(ResourceNotFoundException):
    def __init__(self, identifier: str):
        super().__init__(
            f"Enrollment not found: {identifier}",
            code=BusinessCode.ENROLLMENT_NOT_FOUND,
            error_type="EnrollmentNotFound",
            details={"enrollment": identifier},
        )


class CourseNotFoundException(ResourceNotFoundException):
    def __init__(self, course_id: str):
        super().__init__(
            f"Course not found: {course_id}",
            code=BusinessCode.COURSE_NOT_FOUND,
            error_type="CourseNotFound",
            details={"course_id": course_id},
        )


class InvalidTransitionException(BusinessException):
    """Raised for any status edge outside the enrollment state machine."""

    def __init__(self, current: str, target: str, *, enrollment_id: Optional[str] = None):
        details = {"current": current, "target": target}
        if enrollment_id:
            details["enrollment_id"] = enrollment_id
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=f"Enrollment cannot move from {current} to {target}",
            error_type="InvalidTransition",
            details=details,
        )
        self.current = current
        self.target = target


class SeatUnavailableException(BusinessException):
    def __init__(self, course_id: str):
        super().__init__(
            code=BusinessCode.SEAT_UNAVAILABLE,
            message="No seats are available for this course",
            error_type="SeatUnavailable",
            details={"course_id": course_id},
        )


class PaymentInProgressException(BusinessException):
    """Another attempt holds the enrollment, or its status moved since it was read."""

    retryable = True

    def __init__(self, enrollment_id: str):
        super().__init__(
            code=BusinessCode.PAYMENT_IN_PROGRESS,
            message="A payment for this enrollment is already being processed",
            error_type="PaymentInProgress",
            details={"enrollment_id": enrollment_id},
        )


class EnrollmentConflictException(BusinessException):
    """The stored record changed between read and conditional write."""

    retryable = True

    def __init__(self, enrollment_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Enrollment was modified concurrently, reload and retry",
            error_type="EnrollmentConflict",
            details={"enrollment_id": enrollment_id},
        )
