# models/enrollment.py
from datetime import datetime

from sqlalchemy import Index

from childcare_enrollment.extensions import db
from .base import BaseModel


class EnrollmentStatus:
    """Enrollment review status constants."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALL = (PENDING, APPROVED, REJECTED)

    # Statuses that hold a seat and block a second enrollment in the same class
    HOLDS_SEAT = (PENDING, APPROVED)


class EnrollmentType:
    """Active records are current; historical records are archived and read-only."""
    ACTIVE = 'active'
    HISTORICAL = 'historical'


class PaymentStatus:
    """Payment status constants."""
    UNPAID = 'unpaid'
    PAID = 'paid'


class PaymentMethod:
    """Payment method constants."""
    SELF = 'Self'
    EIP = 'EIP'

    ALL = (SELF, EIP)


# Shared by the partial unique index and the dialect kwargs below
ACTIVE_CLAIM_CONDITION = db.text(
    "enrollment_type = 'active' AND enrollment_status IN ('pending', 'approved')"
)


class Enrollment(BaseModel):
    """One student's claim on one session of one class."""

    __tablename__ = 'enrollment'

    student_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    class_id = db.Column(db.String(36), db.ForeignKey('training_class.id'), nullable=False)
    session_id = db.Column(db.String(36), db.ForeignKey('class_session.id'), nullable=False)

    enrollment_status = db.Column(db.String(20), default=EnrollmentStatus.PENDING, nullable=False)
    enrollment_type = db.Column(db.String(20), default=EnrollmentType.ACTIVE, nullable=False)

    # Payment Information
    payment_status = db.Column(db.String(20), default=PaymentStatus.PAID, nullable=False)
    payment_method = db.Column(db.String(10), nullable=True)

    # Processing timestamps
    enrolled_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True)  # Admin user ID
    admin_notes = db.Column(db.Text, nullable=True)

    # Archiving
    archived_at = db.Column(db.DateTime, nullable=True)
    archived_reason = db.Column(db.String(255), nullable=True)

    # Set once the "session starts soon" reminder has been handed to the dispatcher
    reminder_sent_at = db.Column(db.DateTime, nullable=True)

    session = db.relationship('ClassSession')
    training_class = db.relationship('TrainingClass')
    student = db.relationship('User', foreign_keys=[student_id])

    __table_args__ = (
        # One live claim per student and class; enforced by the database so that
        # concurrent enroll requests cannot both insert
        Index('uq_enrollment_active_claim', 'student_id', 'class_id', unique=True,
              postgresql_where=ACTIVE_CLAIM_CONDITION,
              sqlite_where=ACTIVE_CLAIM_CONDITION),

        Index('idx_enrollment_status', 'enrollment_status'),
        Index('idx_enrollment_type', 'enrollment_type'),
        Index('idx_enrollment_session', 'session_id'),
        Index('idx_enrollment_student', 'student_id', 'enrollment_type'),
        Index('idx_enrollment_class_student', 'class_id', 'student_id'),
        Index('idx_enrollment_status_enrolled', 'enrollment_status', 'enrolled_at'),
    )

    @property
    def is_active(self):
        return self.enrollment_type == EnrollmentType.ACTIVE

    @property
    def is_historical(self):
        return self.enrollment_type == EnrollmentType.HISTORICAL

    @property
    def holds_seat(self):
        return self.is_active and self.enrollment_status in EnrollmentStatus.HOLDS_SEAT

    def to_dict(self, include_details=False):
        result = super().to_dict()
        if include_details:
            result['class_title'] = self.training_class.title if self.training_class else None
            result['location_details'] = self.training_class.location_details if self.training_class else None
            if self.session:
                result['session_start_at'] = self.session.start_at.isoformat()
                result['session_end_at'] = self.session.end_at.isoformat()
            if self.student:
                result['student_name'] = self.student.full_name
                result['student_email'] = self.student.email
        return result

    def __repr__(self):
        return f'<Enrollment {self.id} {self.enrollment_status}/{self.enrollment_type}>'
