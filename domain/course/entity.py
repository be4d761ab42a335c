"""
课程实体（外部协作方维护，本服务只读并原子调整名额）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.exceptions import DomainValidationException


@dataclass
class Course:
    id: str
    title: str
    price: Decimal
    available_spots: int
    max_students: int
    currency: str = "USD"
    start_date: Optional[datetime] = None

    def __post_init__(self):
        self.price = Decimal(self.price)
        if self.available_spots < 0:
            raise DomainValidationException("available_spots must be non-negative", field="available_spots")
        if self.available_spots > self.max_students:
            raise DomainValidationException("available_spots cannot exceed max_students", field="available_spots")

    def has_seat(self) -> bool:
        return self.available_spots > 0
