# models/user.py
from flask_login import UserMixin
from sqlalchemy import Index

from childcare_enrollment.extensions import db
from .base import BaseModel


class RoleType:
    """Define role types as constants."""
    STUDENT = 'student'
    INSTRUCTOR = 'instructor'
    ADMIN = 'admin'

    ALL = (STUDENT, INSTRUCTOR, ADMIN)

    # Staff roles may not enroll themselves in classes
    STAFF = (INSTRUCTOR, ADMIN)


class User(UserMixin, BaseModel):
    """Account of anyone acting on the enrollment engine."""

    __tablename__ = 'users'

    email = db.Column(db.String(120), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    role = db.Column(db.String(20), default=RoleType.STUDENT, nullable=False)
    is_active_account = db.Column(db.Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('idx_user_role', 'role'),
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self):
        return self.is_active_account

    def is_admin(self):
        return self.role == RoleType.ADMIN

    def is_staff(self):
        return self.role in RoleType.STAFF

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'
