# models/session.py
from datetime import datetime

from sqlalchemy import Index, CheckConstraint

from childcare_enrollment.extensions import db
from .base import BaseModel


class SessionStatus:
    """Class session lifecycle status constants."""
    SCHEDULED = 'scheduled'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class TrainingClass(BaseModel):
    """Class directory entry. Descriptive fields are owned outside the engine."""

    __tablename__ = 'training_class'

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    location_details = db.Column(db.String(255), nullable=True)

    sessions = db.relationship('ClassSession', back_populates='training_class', lazy='dynamic')

    def __repr__(self):
        return f'<TrainingClass {self.title}>'


class ClassSession(BaseModel):
    """One scheduled occurrence of a class with its own seat ledger."""

    __tablename__ = 'class_session'

    class_id = db.Column(db.String(36), db.ForeignKey('training_class.id'), nullable=False)
    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    enrolled_count = db.Column(db.Integer, default=0, nullable=False)
    status = db.Column(db.String(20), default=SessionStatus.SCHEDULED, nullable=False)

    # Last waitlist position handed out; positions are never reused
    waitlist_sequence = db.Column(db.Integer, default=0, nullable=False)

    deleted_at = db.Column(db.DateTime, nullable=True)

    training_class = db.relationship('TrainingClass', back_populates='sessions')

    __table_args__ = (
        CheckConstraint('capacity > 0', name='ck_session_capacity_positive'),
        CheckConstraint('enrolled_count >= 0', name='ck_session_enrolled_non_negative'),
        CheckConstraint('enrolled_count <= capacity', name='ck_session_enrolled_within_capacity'),

        Index('idx_session_class', 'class_id'),
        Index('idx_session_status_end', 'status', 'end_at'),
        Index('idx_session_start', 'start_at'),
    )

    @property
    def seats_remaining(self):
        return max(self.capacity - self.enrolled_count, 0)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def is_full(self):
        """Check if session is at capacity"""
        return self.enrolled_count >= self.capacity

    def has_started(self, now=None):
        return self.start_at <= (now or datetime.now())

    def is_enrollable(self, now=None):
        return (
            self.status == SessionStatus.SCHEDULED
            and not self.is_deleted
            and not self.has_started(now)
        )

    def __repr__(self):
        return f'<ClassSession {self.id} {self.enrolled_count}/{self.capacity}>'
