"""
报名数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, JSON, Boolean, Index
)

from .base import Base, utcnow


class EnrollmentModel(Base):
    """
    报名数据库模型

    支付明细平铺在同一行，状态与交易号在一次 UPDATE 中原子写入。
    所有业务规则都在 domain.enrollment.entity.Enrollment 中
    """
    __tablename__ = "enrollments"

    # 主键
    id = Column(String(64), primary_key=True, comment="报名ID")

    course_id = Column(String(64), nullable=False, index=True, comment="课程ID")
    student_id = Column(String(64), nullable=False, comment="学员ID")
    parent_id = Column(String(64), nullable=False, index=True, comment="家长/付款人ID")
    contact_email = Column(String(254), nullable=True, comment="通知邮箱")

    status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="报名状态: pending/paid/payment_failed/confirmed/cancelled/refunded"
    )

    # 支付明细（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")
    payment_status = Column(String(32), nullable=False, default="pending", comment="支付状态")
    transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易号")
    auth_code = Column(String(50), nullable=True, comment="授权码")
    avs_response = Column(String(10), nullable=True, comment="AVS 结果")
    cvv_response = Column(String(10), nullable=True, comment="CVV 结果")
    failure_reason = Column(Text, nullable=True, comment="拒付原因")
    failure_code = Column(String(20), nullable=True, comment="拒付码")
    refund_id = Column(String(100), nullable=True, comment="退款交易号")
    refunded_amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="已退款金额")

    # 名额与对账
    seat_reserved = Column(Boolean, nullable=False, default=False, comment="是否已扣减名额")
    needs_reconciliation = Column(Boolean, nullable=False, default=False, index=True, comment="是否需要人工对账")
    reconciliation_reason = Column(Text, nullable=True, comment="对账原因")

    # 进行中的支付/退款尝试
    active_attempt_id = Column(String(64), nullable=True, comment="进行中的尝试ID")
    attempt_started_at = Column(DateTime(timezone=True), nullable=True, comment="尝试开始时间")
    last_order_id = Column(String(200), nullable=True, comment="最近一次网关订单号")

    notes = Column(JSON, nullable=True, comment="备注")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_enrollments_course_status", "course_id", "status"),
    )

    def __repr__(self):
        return f"<EnrollmentModel(id='{self.id}', course_id='{self.course_id}', status='{self.status}')>"
