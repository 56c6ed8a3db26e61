# services/events.py
"""Domain events emitted after a unit of work commits."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class EventType:
    ENROLLMENT_PENDING = 'EnrollmentPending'
    ENROLLMENT_APPROVED = 'EnrollmentApproved'
    ENROLLMENT_REJECTED = 'EnrollmentRejected'
    ENROLLMENT_RESET_TO_PENDING = 'EnrollmentResetToPending'
    ENROLLMENT_CANCELLED = 'EnrollmentCancelled'
    ENROLLMENT_ARCHIVED = 'EnrollmentArchived'
    WAITLIST_JOINED = 'WaitlistJoined'
    WAITLIST_LEFT = 'WaitlistLeft'
    WAITLIST_PROMOTED = 'WaitlistPromoted'
    WAITLIST_EXPIRED = 'WaitlistExpired'
    SESSION_REMINDER = 'SessionReminder'


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    student_id: str
    class_id: str
    session_id: str
    enrollment_id: Optional[str] = None
    position: Optional[int] = None
    admin_notes: Optional[str] = None
    payment_method: Optional[str] = None
    occurred_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def for_enrollment(cls, event_type, enrollment):
        return cls(
            event_type=event_type,
            student_id=enrollment.student_id,
            class_id=enrollment.class_id,
            session_id=enrollment.session_id,
            enrollment_id=enrollment.id,
            admin_notes=enrollment.admin_notes,
            payment_method=enrollment.payment_method
        )

    @classmethod
    def for_waitlist_entry(cls, event_type, entry):
        return cls(
            event_type=event_type,
            student_id=entry.student_id,
            class_id=entry.class_id,
            session_id=entry.session_id,
            position=entry.position
        )

    def to_payload(self):
        """Payload handed to the notification collaborators."""
        payload = {
            'eventType': self.event_type,
            'studentId': self.student_id,
            'classId': self.class_id,
            'sessionId': self.session_id,
            'occurredAt': self.occurred_at.isoformat()
        }
        optional = {
            'enrollmentId': self.enrollment_id,
            'position': self.position,
            'adminNotes': self.admin_notes,
            'paymentMethod': self.payment_method
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload
