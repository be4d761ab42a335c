"""
Enrollment DTOs (Pydantic v2).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from application.dtos.payments import CamelModel
from domain.enrollment.entity import Enrollment


class CreateEnrollment(CamelModel):
    course_id: str = Field(min_length=1)
    student_id: str = Field(min_length=1)
    parent_id: str = Field(min_length=1)
    contact_email: Optional[str] = Field(default=None, max_length=254)
    notes: list[str] = Field(default_factory=list)

    @field_validator("contact_email")
    @classmethod
    def _looks_like_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        local, sep, domain = v.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("invalid email address")
        return v.lower()


class PaymentDetailsView(CamelModel):
    amount: Decimal
    currency: str
    payment_status: str
    transaction_id: Optional[str] = None
    auth_code: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None


class EnrollmentView(CamelModel):
    id: str
    course_id: str
    student_id: str
    parent_id: str
    status: str
    payment_details: PaymentDetailsView
    contact_email: Optional[str] = None
    seat_reserved: bool
    needs_reconciliation: bool
    reconciliation_reason: Optional[str] = None
    notes: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, enrollment: Enrollment) -> "EnrollmentView":
        pd = enrollment.payment_details
        return cls(
            id=enrollment.id,
            course_id=enrollment.course_id,
            student_id=enrollment.student_id,
            parent_id=enrollment.parent_id,
            status=enrollment.status.value,
            payment_details=PaymentDetailsView(
                amount=pd.amount,
                currency=pd.currency,
                payment_status=pd.payment_status.value,
                transaction_id=pd.transaction_id,
                auth_code=pd.auth_code,
                failure_reason=pd.failure_reason,
                failure_code=pd.failure_code,
                refund_id=pd.refund_id,
                refunded_amount=pd.refunded_amount,
            ),
            contact_email=enrollment.contact_email,
            seat_reserved=enrollment.seat_reserved,
            needs_reconciliation=enrollment.needs_reconciliation,
            reconciliation_reason=enrollment.reconciliation_reason,
            notes=list(enrollment.notes),
            created_at=enrollment.created_at,
            updated_at=enrollment.updated_at,
        )


class ReminderResult(CamelModel):
    course_id: str
    scheduled: int
