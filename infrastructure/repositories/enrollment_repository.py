"""
报名仓储实现 - 使用SQLAlchemy实现数据访问

所有状态写入都是带条件的单条 UPDATE，通过 rowcount 判断是否命中，
并发的两个请求最多只有一个能够成功。
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.enrollment.entity import Enrollment, PaymentDetails, PaymentStatus
from domain.enrollment.repository import EnrollmentRepository
from domain.enrollment.state_machine import EnrollmentStatus
from infrastructure.models.enrollment import EnrollmentModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyEnrollmentRepository(EnrollmentRepository):
    """报名仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: EnrollmentModel) -> Enrollment:
        """将数据库模型转换为领域实体"""
        return Enrollment(
            id=model.id,
            course_id=model.course_id,
            student_id=model.student_id,
            parent_id=model.parent_id,
            status=EnrollmentStatus(model.status),
            payment_details=PaymentDetails(
                amount=Decimal(str(model.amount)),
                currency=model.currency,
                payment_status=PaymentStatus(model.payment_status),
                transaction_id=model.transaction_id,
                auth_code=model.auth_code,
                avs_response=model.avs_response,
                cvv_response=model.cvv_response,
                failure_reason=model.failure_reason,
                failure_code=model.failure_code,
                refund_id=model.refund_id,
                refunded_amount=Decimal(str(model.refunded_amount)) if model.refunded_amount is not None else None,
            ),
            contact_email=model.contact_email,
            seat_reserved=bool(model.seat_reserved),
            needs_reconciliation=bool(model.needs_reconciliation),
            reconciliation_reason=model.reconciliation_reason,
            active_attempt_id=model.active_attempt_id,
            attempt_started_at=model.attempt_started_at,
            last_order_id=model.last_order_id,
            notes=list(model.notes or []),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _mutable_values(self, entity: Enrollment) -> dict:
        """实体中可变字段 -> 列值（用于条件 UPDATE）"""
        pd = entity.payment_details
        return {
            "status": entity.status.value,
            "contact_email": entity.contact_email,
            "payment_status": pd.payment_status.value,
            "transaction_id": pd.transaction_id,
            "auth_code": pd.auth_code,
            "avs_response": pd.avs_response,
            "cvv_response": pd.cvv_response,
            "failure_reason": pd.failure_reason,
            "failure_code": pd.failure_code,
            "refund_id": pd.refund_id,
            "refunded_amount": pd.refunded_amount,
            "seat_reserved": entity.seat_reserved,
            "needs_reconciliation": entity.needs_reconciliation,
            "reconciliation_reason": entity.reconciliation_reason,
            "active_attempt_id": entity.active_attempt_id,
            "attempt_started_at": entity.attempt_started_at,
            "last_order_id": entity.last_order_id,
            "notes": list(entity.notes),
            "updated_at": entity.updated_at,
        }

    def _to_model(self, entity: Enrollment) -> EnrollmentModel:
        """将领域实体转换为数据库模型"""
        return EnrollmentModel(
            id=entity.id,
            course_id=entity.course_id,
            student_id=entity.student_id,
            parent_id=entity.parent_id,
            amount=entity.payment_details.amount,
            currency=entity.payment_details.currency,
            created_at=entity.created_at,
            **self._mutable_values(entity),
        )

    async def create(self, enrollment: Enrollment) -> Enrollment:
        """创建报名记录"""
        db_enrollment = self._to_model(enrollment)
        self.session.add(db_enrollment)
        await self.session.flush()
        await self.session.refresh(db_enrollment)
        return self._to_entity(db_enrollment)

    async def get_by_id(self, enrollment_id: str) -> Optional[Enrollment]:
        """根据ID获取报名"""
        result = await self.session.execute(
            select(EnrollmentModel).where(EnrollmentModel.id == enrollment_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Enrollment]:
        """根据网关交易号获取报名"""
        result = await self.session.execute(
            select(EnrollmentModel)
            .where(EnrollmentModel.transaction_id == transaction_id)
            .order_by(EnrollmentModel.updated_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_by_course(
        self,
        course_id: str,
        status: Optional[EnrollmentStatus] = None,
    ) -> List[Enrollment]:
        query = select(EnrollmentModel).where(EnrollmentModel.course_id == course_id)
        if status is not None:
            query = query.where(EnrollmentModel.status == EnrollmentStatus(status).value)
        query = query.order_by(EnrollmentModel.created_at.asc(), EnrollmentModel.id.asc())
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_needing_reconciliation(self, skip: int = 0, limit: int = 100) -> List[Enrollment]:
        query = (
            select(EnrollmentModel)
            .where(EnrollmentModel.needs_reconciliation.is_(True))
            .order_by(EnrollmentModel.updated_at.desc(), EnrollmentModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def claim_attempt(
        self,
        enrollment_id: str,
        *,
        expected_status: EnrollmentStatus,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        stmt = (
            update(EnrollmentModel)
            .where(
                EnrollmentModel.id == enrollment_id,
                EnrollmentModel.status == EnrollmentStatus(expected_status).value,
                or_(
                    EnrollmentModel.active_attempt_id.is_(None),
                    EnrollmentModel.attempt_started_at < stale_before,
                ),
            )
            .values(active_attempt_id=attempt_id, attempt_started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        claimed = result.rowcount == 1
        if not claimed:
            logger.info("enrollment_claim_rejected", enrollment_id=enrollment_id, expected_status=str(expected_status))
        return claimed

    async def release_attempt(self, enrollment_id: str, attempt_id: str) -> bool:
        stmt = (
            update(EnrollmentModel)
            .where(
                EnrollmentModel.id == enrollment_id,
                EnrollmentModel.active_attempt_id == attempt_id,
            )
            .values(active_attempt_id=None, attempt_started_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def save_if_status(
        self,
        enrollment: Enrollment,
        *,
        expected_status: EnrollmentStatus,
        expected_attempt_id: Optional[str] = None,
    ) -> bool:
        claim_clause = (
            EnrollmentModel.active_attempt_id == expected_attempt_id
            if expected_attempt_id is not None
            else EnrollmentModel.active_attempt_id.is_(None)
        )
        stmt = (
            update(EnrollmentModel)
            .where(
                EnrollmentModel.id == enrollment.id,
                EnrollmentModel.status == EnrollmentStatus(expected_status).value,
                claim_clause,
            )
            .values(**self._mutable_values(enrollment))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
