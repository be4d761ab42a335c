"""
课程仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Course


class CourseRepository(ABC):

    @abstractmethod
    async def get_by_id(self, course_id: str) -> Optional[Course]:
        pass

    @abstractmethod
    async def decrement_available_spots(self, course_id: str) -> bool:
        """Atomic `available_spots - 1` guarded by `available_spots > 0`."""
        pass

    @abstractmethod
    async def increment_available_spots(self, course_id: str) -> bool:
        """Atomic `available_spots + 1` guarded by `available_spots < max_students`."""
        pass
