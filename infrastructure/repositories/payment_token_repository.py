"""
支付令牌仓储实现
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import PaymentToken
from domain.payment.repository import PaymentTokenRepository
from infrastructure.models.payment_token import PaymentTokenModel


class SQLAlchemyPaymentTokenRepository(PaymentTokenRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTokenModel) -> PaymentToken:
        return PaymentToken(
            token_id=model.token_id,
            customer_id=model.customer_id,
            last4=model.last4,
            expiry_month=model.expiry_month,
            expiry_year=model.expiry_year,
            created_at=model.created_at,
        )

    async def save(self, token: PaymentToken) -> PaymentToken:
        model = await self.session.merge(
            PaymentTokenModel(
                token_id=token.token_id,
                customer_id=token.customer_id,
                last4=token.last4,
                expiry_month=token.expiry_month,
                expiry_year=token.expiry_year,
                created_at=token.created_at,
            )
        )
        await self.session.flush()
        return self._to_entity(model)

    async def get_latest_for_customer(self, customer_id: str) -> Optional[PaymentToken]:
        result = await self.session.execute(
            select(PaymentTokenModel)
            .where(PaymentTokenModel.customer_id == customer_id)
            .order_by(PaymentTokenModel.created_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None
