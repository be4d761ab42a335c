"""
支付令牌仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import PaymentToken


class PaymentTokenRepository(ABC):

    @abstractmethod
    async def save(self, token: PaymentToken) -> PaymentToken:
        """保存（或覆盖同 token_id 的）令牌"""
        pass

    @abstractmethod
    async def get_latest_for_customer(self, customer_id: str) -> Optional[PaymentToken]:
        """获取客户最近保存的令牌"""
        pass
