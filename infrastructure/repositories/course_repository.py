"""
课程仓储实现 - 名额调整为带条件的原子 UPDATE
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.course.entity import Course
from domain.course.repository import CourseRepository
from infrastructure.models.course import CourseModel


class SQLAlchemyCourseRepository(CourseRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CourseModel) -> Course:
        return Course(
            id=model.id,
            title=model.title,
            price=Decimal(str(model.price)),
            currency=model.currency,
            available_spots=model.available_spots,
            max_students=model.max_students,
            start_date=model.start_date,
        )

    async def get_by_id(self, course_id: str) -> Optional[Course]:
        result = await self.session.execute(select(CourseModel).where(CourseModel.id == course_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def decrement_available_spots(self, course_id: str) -> bool:
        stmt = (
            update(CourseModel)
            .where(CourseModel.id == course_id, CourseModel.available_spots > 0)
            .values(available_spots=CourseModel.available_spots - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def increment_available_spots(self, course_id: str) -> bool:
        stmt = (
            update(CourseModel)
            .where(CourseModel.id == course_id, CourseModel.available_spots < CourseModel.max_students)
            .values(available_spots=CourseModel.available_spots + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
