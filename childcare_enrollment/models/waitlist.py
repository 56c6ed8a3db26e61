# models/waitlist.py
from datetime import datetime

from sqlalchemy import Index, UniqueConstraint

from childcare_enrollment.extensions import db
from .base import BaseModel


class WaitlistStatus:
    """Waitlist entry status constants."""
    WAITING = 'waiting'
    OFFERED = 'offered'
    EXPIRED = 'expired'
    WITHDRAWN = 'withdrawn'

    # Entries still queued for a seat
    OPEN = (WAITING, OFFERED)


OPEN_ENTRY_CONDITION = db.text("status IN ('waiting', 'offered')")


class WaitlistEntry(BaseModel):
    """A student queued for a seat in a full session."""

    __tablename__ = 'waitlist_entry'

    student_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    class_id = db.Column(db.String(36), db.ForeignKey('training_class.id'), nullable=False)
    session_id = db.Column(db.String(36), db.ForeignKey('class_session.id'), nullable=False)

    # Tie-break for promotion order; gaps are expected
    position = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default=WaitlistStatus.WAITING, nullable=False)

    joined_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    offered_at = db.Column(db.DateTime, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolution_note = db.Column(db.String(255), nullable=True)

    session = db.relationship('ClassSession')
    student = db.relationship('User', foreign_keys=[student_id])

    __table_args__ = (
        UniqueConstraint('session_id', 'position', name='uq_waitlist_session_position'),

        # One open entry per student and session
        Index('uq_waitlist_open_entry', 'session_id', 'student_id', unique=True,
              postgresql_where=OPEN_ENTRY_CONDITION,
              sqlite_where=OPEN_ENTRY_CONDITION),

        Index('idx_waitlist_session_status_position', 'session_id', 'status', 'position'),
        Index('idx_waitlist_class_student', 'class_id', 'student_id'),
        Index('idx_waitlist_offered', 'status', 'offered_at'),
    )

    @property
    def is_open(self):
        return self.status in WaitlistStatus.OPEN

    def __repr__(self):
        return f'<WaitlistEntry session={self.session_id} position={self.position} {self.status}>'
