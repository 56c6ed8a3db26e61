# models/__init__.py
from .base import BaseModel
from .user import User, RoleType
from .session import TrainingClass, ClassSession, SessionStatus
from .enrollment import Enrollment, EnrollmentStatus, EnrollmentType, PaymentStatus, PaymentMethod
from .waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    'BaseModel',
    'User',
    'RoleType',
    'TrainingClass',
    'ClassSession',
    'SessionStatus',
    'Enrollment',
    'EnrollmentStatus',
    'EnrollmentType',
    'PaymentStatus',
    'PaymentMethod',
    'WaitlistEntry',
    'WaitlistStatus'
]
