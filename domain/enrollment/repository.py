"""
报名仓储接口 - 定义报名数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Enrollment
from .state_machine import EnrollmentStatus


class EnrollmentRepository(ABC):
    """报名仓储抽象接口

    Status writes are compare-and-set: they only apply while the stored
    status (and claim) still match what the caller read.
    """

    @abstractmethod
    async def create(self, enrollment: Enrollment) -> Enrollment:
        """创建报名记录（pending）"""
        pass

    @abstractmethod
    async def get_by_id(self, enrollment_id: str) -> Optional[Enrollment]:
        pass

    @abstractmethod
    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Enrollment]:
        pass

    @abstractmethod
    async def list_by_course(
        self,
        course_id: str,
        status: Optional[EnrollmentStatus] = None,
    ) -> List[Enrollment]:
        pass

    @abstractmethod
    async def list_needing_reconciliation(self, skip: int = 0, limit: int = 100) -> List[Enrollment]:
        pass

    @abstractmethod
    async def claim_attempt(
        self,
        enrollment_id: str,
        *,
        expected_status: EnrollmentStatus,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take the in-flight claim if status matches and no live claim exists."""
        pass

    @abstractmethod
    async def release_attempt(self, enrollment_id: str, attempt_id: str) -> bool:
        pass

    @abstractmethod
    async def save_if_status(
        self,
        enrollment: Enrollment,
        *,
        expected_status: EnrollmentStatus,
        expected_attempt_id: Optional[str] = None,
    ) -> bool:
        """Persist every mutable field, conditioned on the stored status/claim."""
        pass
