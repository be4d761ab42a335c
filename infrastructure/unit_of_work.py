"""SQLAlchemy Unit of Work 实现

一个实例对应一个数据库事务。报名状态、名额与令牌的变更在同一个
UoW 内提交，任一步失败整体回滚。
"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.course_repository import SQLAlchemyCourseRepository
from infrastructure.repositories.enrollment_repository import SQLAlchemyEnrollmentRepository
from infrastructure.repositories.payment_token_repository import SQLAlchemyPaymentTokenRepository


logger = get_logger(__name__)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.enrollment_repository = SQLAlchemyEnrollmentRepository(self.session)
        self.course_repository = SQLAlchemyCourseRepository(self.session)
        self.payment_token_repository = SQLAlchemyPaymentTokenRepository(self.session)
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self.session is not None:
                await self.session.close()
                self.session = None
            self.enrollment_repository = None
            self.course_repository = None
            self.payment_token_repository = None

    async def commit(self) -> None:
        if not self._readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
            if not self._readonly:
                logger.warning("uow_rolled_back")
        self._committed = False


def sqlalchemy_uow_factory(session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
    """返回绑定到指定会话工厂的 UoW 构造器（供应用服务注入）"""

    def _factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return _factory
