"""Infrastructure models package exports."""
from .base import Base, metadata
from .course import CourseModel
from .enrollment import EnrollmentModel
from .payment_token import PaymentTokenModel

__all__ = [
    "Base",
    "metadata",
    "CourseModel",
    "EnrollmentModel",
    "PaymentTokenModel",
]
