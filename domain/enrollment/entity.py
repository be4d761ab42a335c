"""
报名领域实体 - Enrollment 聚合根
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from .state_machine import EnrollmentStatus, ensure_transition


class PaymentStatus(str, Enum):
    """Payment status mirrored on the enrollment record."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentDetails:
    amount: Decimal
    currency: str  # ISO-4217
    payment_status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    auth_code: Optional[str] = None
    avs_response: Optional[str] = None
    cvv_response: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None

    def __post_init__(self):
        if self.amount is None or Decimal(self.amount) <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.amount}",
                field="amount",
            )
        self.amount = Decimal(self.amount)
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.currency = self.currency.upper()
        self.payment_status = PaymentStatus(self.payment_status)


@dataclass
class Enrollment:
    """
    报名聚合根

    业务规则：
    1. status 只能沿状态机的边迁移
    2. transaction_id 仅在扣款请求到达网关并返回交易号时设置（成功或拒付）
    3. seat_reserved 记录是否已扣减课程名额，保证名额只扣/还一次
    4. 记录永不硬删除，取消/退款都是状态迁移
    """

    id: str
    course_id: str
    student_id: str
    parent_id: str
    status: EnrollmentStatus
    payment_details: PaymentDetails

    contact_email: Optional[str] = None
    seat_reserved: bool = False
    needs_reconciliation: bool = False
    reconciliation_reason: Optional[str] = None

    # In-flight claim held by one payment/refund attempt
    active_attempt_id: Optional[str] = None
    attempt_started_at: Optional[datetime] = None
    last_order_id: Optional[str] = None

    notes: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = EnrollmentStatus(self.status)
        for name in ("course_id", "student_id", "parent_id"):
            if not getattr(self, name):
                raise DomainValidationException(f"{name} is required", field=name)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.attempt_started_at = _ensure_utc(self.attempt_started_at)
        if self.notes is None:
            self.notes = []

    @classmethod
    def new(
        cls,
        *,
        course_id: str,
        student_id: str,
        parent_id: str,
        amount: Decimal,
        currency: str,
        contact_email: Optional[str] = None,
        notes: Optional[list[str]] = None,
    ) -> "Enrollment":
        now = _now()
        return cls(
            id=uuid.uuid4().hex,
            course_id=course_id,
            student_id=student_id,
            parent_id=parent_id,
            status=EnrollmentStatus.PENDING,
            payment_details=PaymentDetails(amount=amount, currency=currency),
            contact_email=contact_email,
            notes=list(notes or []),
            created_at=now,
            updated_at=now,
        )

    def copy(self) -> "Enrollment":
        return replace(
            self,
            payment_details=replace(self.payment_details),
            notes=list(self.notes),
        )

    def transition_to(self, target: EnrollmentStatus) -> bool:
        changed = ensure_transition(self.status, target, enrollment_id=self.id)
        if changed:
            self.status = EnrollmentStatus(target)
            self.updated_at = _now()
        return changed

    def _enter_payment_outcome(self, target: EnrollmentStatus) -> None:
        # A retry runs payment_failed -> pending before the new outcome
        if self.status == EnrollmentStatus.PAYMENT_FAILED:
            self.transition_to(EnrollmentStatus.PENDING)
        self.transition_to(target)

    def mark_paid(
        self,
        *,
        transaction_id: str,
        auth_code: Optional[str] = None,
        avs_response: Optional[str] = None,
        cvv_response: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> None:
        if not transaction_id:
            raise DomainValidationException("transaction_id is required for a paid enrollment", field="transaction_id")
        self._enter_payment_outcome(EnrollmentStatus.PAID)
        pd = self.payment_details
        pd.payment_status = PaymentStatus.COMPLETED
        pd.transaction_id = transaction_id
        pd.auth_code = auth_code
        pd.avs_response = avs_response
        pd.cvv_response = cvv_response
        pd.failure_reason = None
        pd.failure_code = None
        self.last_order_id = order_id
        self.release_claim()

    def mark_payment_failed(
        self,
        *,
        reason: str,
        code: Optional[str] = None,
        transaction_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> None:
        self._enter_payment_outcome(EnrollmentStatus.PAYMENT_FAILED)
        pd = self.payment_details
        pd.payment_status = PaymentStatus.FAILED
        pd.failure_reason = reason
        pd.failure_code = code
        # Only a declined charge that reached the gateway carries an id
        pd.transaction_id = transaction_id
        pd.auth_code = None
        self.last_order_id = order_id
        self.release_claim()

    def mark_confirmed(self) -> bool:
        return self.transition_to(EnrollmentStatus.CONFIRMED)

    def mark_cancelled(self) -> None:
        self.transition_to(EnrollmentStatus.CANCELLED)

    def mark_refunded(self, *, refund_id: str, amount: Decimal) -> None:
        self.transition_to(EnrollmentStatus.REFUNDED)
        pd = self.payment_details
        pd.payment_status = PaymentStatus.REFUNDED
        pd.refund_id = refund_id
        pd.refunded_amount = Decimal(amount)
        self.release_claim()

    def flag_for_reconciliation(self, reason: str) -> None:
        self.needs_reconciliation = True
        self.reconciliation_reason = reason
        self.updated_at = _now()

    def clear_reconciliation(self) -> None:
        self.needs_reconciliation = False
        self.reconciliation_reason = None
        self.updated_at = _now()

    def claim(self, attempt_id: str, now: Optional[datetime] = None) -> None:
        self.active_attempt_id = attempt_id
        self.attempt_started_at = now or _now()

    def release_claim(self) -> None:
        self.active_attempt_id = None
        self.attempt_started_at = None
