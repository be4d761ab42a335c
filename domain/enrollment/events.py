"""
Enrollment domain events.

Dataclass events record committed status changes for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid

from .state_machine import EnrollmentStatus


@dataclass
class EnrollmentStatusChanged:
    enrollment_id: str
    previous_status: Optional[EnrollmentStatus]
    status: EnrollmentStatus
    course_id: str
    contact_email: Optional[str] = None
    course_title: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_enrollment(cls, enrollment, previous_status, *, course_title: Optional[str] = None) -> "EnrollmentStatusChanged":
        pd = enrollment.payment_details
        return cls(
            enrollment_id=enrollment.id,
            previous_status=previous_status,
            status=enrollment.status,
            course_id=enrollment.course_id,
            contact_email=enrollment.contact_email,
            course_title=course_title,
            amount=pd.amount,
            currency=pd.currency,
            transaction_id=pd.transaction_id,
            failure_reason=pd.failure_reason,
        )
