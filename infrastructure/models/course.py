"""
课程数据库模型（由管理后台维护，本服务只读取并调整名额）
"""
from sqlalchemy import CheckConstraint, Column, Integer, String, Numeric, DateTime

from .base import Base


class CourseModel(Base):
    __tablename__ = "courses"

    id = Column(String(64), primary_key=True, comment="课程ID")
    title = Column(String(200), nullable=False, comment="课程名称")
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="价格")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码")
    available_spots = Column(Integer, nullable=False, comment="剩余名额")
    max_students = Column(Integer, nullable=False, comment="最大名额")
    start_date = Column(DateTime(timezone=True), nullable=True, comment="开课时间")

    __table_args__ = (
        CheckConstraint("available_spots >= 0", name="spots_non_negative"),
        CheckConstraint("available_spots <= max_students", name="spots_within_max"),
    )

    def __repr__(self):
        return f"<CourseModel(id='{self.id}', available_spots={self.available_spots}/{self.max_students})>"
