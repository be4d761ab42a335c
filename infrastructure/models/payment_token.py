"""
支付令牌数据库模型（仅保存网关令牌与卡尾号，不保存卡号/CVV）
"""
from sqlalchemy import Column, String, DateTime, Index

from .base import Base, utcnow


class PaymentTokenModel(Base):
    __tablename__ = "payment_tokens"

    token_id = Column(String(200), primary_key=True, comment="网关令牌")
    customer_id = Column(String(64), nullable=False, comment="客户ID")
    last4 = Column(String(4), nullable=True, comment="卡号后四位")
    expiry_month = Column(String(2), nullable=True, comment="有效期月")
    expiry_year = Column(String(4), nullable=True, comment="有效期年")
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )

    __table_args__ = (
        Index("ix_payment_tokens_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self):
        return f"<PaymentTokenModel(token_id='{self.token_id}', customer_id='{self.customer_id}')>"
