# services/enrollment_state.py
"""
Lifecycle of a single enrollment record.

States are the review status (pending, approved, rejected) crossed with the
active/historical axis. Historical records are frozen. Seat bookkeeping that a
transition implies is done here through the CapacityLedger, inside the
caller's unit of work; nothing in this module commits.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from childcare_enrollment.extensions import db
from childcare_enrollment.models.enrollment import (
    Enrollment, EnrollmentStatus, EnrollmentType, PaymentStatus
)
from childcare_enrollment.services.capacity_ledger import CapacityLedger
from childcare_enrollment.services.errors import (
    AlreadyEnrolled, InvalidStateTransition, SessionFull
)

logger = logging.getLogger('enrollment_state')


class EnrollmentEvent:
    """Events that drive enrollment transitions."""
    APPROVE = 'approve'
    REJECT = 'reject'
    RESET_TO_PENDING = 'reset_to_pending'
    CANCEL = 'cancel'
    ARCHIVE = 'archive'


# (current status, event) -> next status. None means the record is removed.
TRANSITIONS = {
    (EnrollmentStatus.PENDING, EnrollmentEvent.APPROVE): EnrollmentStatus.APPROVED,
    (EnrollmentStatus.PENDING, EnrollmentEvent.REJECT): EnrollmentStatus.REJECTED,
    (EnrollmentStatus.APPROVED, EnrollmentEvent.RESET_TO_PENDING): EnrollmentStatus.PENDING,
    (EnrollmentStatus.REJECTED, EnrollmentEvent.RESET_TO_PENDING): EnrollmentStatus.PENDING,
    (EnrollmentStatus.PENDING, EnrollmentEvent.CANCEL): None,
    (EnrollmentStatus.APPROVED, EnrollmentEvent.CANCEL): None,
    # Pending records are closed as rejected when their session is archived
    (EnrollmentStatus.PENDING, EnrollmentEvent.ARCHIVE): EnrollmentStatus.REJECTED,
    (EnrollmentStatus.APPROVED, EnrollmentEvent.ARCHIVE): EnrollmentStatus.APPROVED,
    (EnrollmentStatus.REJECTED, EnrollmentEvent.ARCHIVE): EnrollmentStatus.REJECTED,
}

TRANSITION_MESSAGES = {
    EnrollmentEvent.APPROVE: 'Can only approve pending enrollments',
    EnrollmentEvent.REJECT: 'Can only reject pending enrollments',
    EnrollmentEvent.RESET_TO_PENDING: 'Enrollment is already pending',
    EnrollmentEvent.CANCEL: 'Only pending or approved enrollments can be cancelled',
    EnrollmentEvent.ARCHIVE: 'Enrollment cannot be archived',
}


def _append_note(existing, note):
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


class EnrollmentStateMachine:
    """Transition rules and their side effects for Enrollment records."""

    @staticmethod
    def next_status(enrollment, event):
        """
        Resolve the target status of a transition.

        Raises:
            InvalidStateTransition: If the record is historical or the
                transition is not allowed from its current status
        """
        if enrollment.is_historical:
            raise InvalidStateTransition(
                'Archived enrollments cannot be changed',
                enrollment_id=enrollment.id
            )

        key = (enrollment.enrollment_status, event)
        if key not in TRANSITIONS:
            raise InvalidStateTransition(
                TRANSITION_MESSAGES.get(event),
                enrollment_id=enrollment.id,
                current_status=enrollment.enrollment_status,
                event=event
            )
        return TRANSITIONS[key]

    @staticmethod
    def create(student_id, class_id, session_id, payment_method=None, payment_status=None, now=None):
        """
        Reserve a seat and insert a Pending+Active enrollment.

        Raises:
            SessionFull: If no seat is left
            AlreadyEnrolled: If the active-claim unique index rejects the insert
        """
        if not CapacityLedger.try_reserve(session_id, now=now):
            raise SessionFull(session_id=session_id)

        enrollment = Enrollment(
            student_id=student_id,
            class_id=class_id,
            session_id=session_id,
            enrollment_status=EnrollmentStatus.PENDING,
            enrollment_type=EnrollmentType.ACTIVE,
            payment_status=payment_status or PaymentStatus.PAID,
            payment_method=payment_method,
            enrolled_at=now or datetime.now()
        )
        db.session.add(enrollment)

        try:
            db.session.flush()
        except IntegrityError as e:
            # The caller rolls back, which also undoes the seat reservation
            logger.info(f"Active-claim constraint rejected enrollment of {student_id} in class {class_id}: {e.orig}")
            raise AlreadyEnrolled(student_id=student_id, class_id=class_id) from e

        return enrollment

    @staticmethod
    def approve(enrollment, admin_id, notes=None):
        enrollment.enrollment_status = EnrollmentStateMachine.next_status(enrollment, EnrollmentEvent.APPROVE)
        now = datetime.now()
        enrollment.approved_at = now
        enrollment.reviewed_at = now
        enrollment.reviewed_by = admin_id
        enrollment.admin_notes = notes
        db.session.flush()
        return enrollment

    @staticmethod
    def reject(enrollment, admin_id, notes=None):
        """Reject a pending enrollment and give its seat back."""
        enrollment.enrollment_status = EnrollmentStateMachine.next_status(enrollment, EnrollmentEvent.REJECT)
        now = datetime.now()
        enrollment.rejected_at = now
        enrollment.reviewed_at = now
        enrollment.reviewed_by = admin_id
        enrollment.admin_notes = notes
        CapacityLedger.release(enrollment.session_id)
        db.session.flush()
        return enrollment

    @staticmethod
    def reset_to_pending(enrollment, admin_id, notes=None, now=None):
        """
        Admin override back to Pending.

        An approved record still holds its seat. A rejected one gave it back,
        so the seat is reserved again and the claim re-checked against the
        active-claim unique index.

        Raises:
            SessionFull: If a rejected record's seat has been taken meanwhile
            AlreadyEnrolled: If the student holds another live claim in the class
        """
        previous = enrollment.enrollment_status
        target = EnrollmentStateMachine.next_status(enrollment, EnrollmentEvent.RESET_TO_PENDING)

        if previous == EnrollmentStatus.REJECTED:
            if not CapacityLedger.try_reserve(enrollment.session_id, now=now):
                raise SessionFull(session_id=enrollment.session_id)

        enrollment.enrollment_status = target
        enrollment.approved_at = None
        enrollment.rejected_at = None
        enrollment.reviewed_at = datetime.now()
        enrollment.reviewed_by = admin_id
        enrollment.admin_notes = notes

        try:
            db.session.flush()
        except IntegrityError as e:
            raise AlreadyEnrolled(
                student_id=enrollment.student_id, class_id=enrollment.class_id
            ) from e

        return enrollment

    @staticmethod
    def cancel(enrollment):
        """Student cancellation: free the seat and remove the record."""
        EnrollmentStateMachine.next_status(enrollment, EnrollmentEvent.CANCEL)
        CapacityLedger.release(enrollment.session_id)
        db.session.delete(enrollment)
        db.session.flush()

    @staticmethod
    def archive(enrollment, reason, now=None):
        """
        Move an active record to the historical store.

        Pending records are closed as rejected first. The ledger is not touched:
        archiving happens when the session no longer takes enrollments.
        """
        target = EnrollmentStateMachine.next_status(enrollment, EnrollmentEvent.ARCHIVE)
        now = now or datetime.now()

        if enrollment.enrollment_status == EnrollmentStatus.PENDING:
            enrollment.rejected_at = now
            enrollment.admin_notes = _append_note(enrollment.admin_notes, f"Closed without review: {reason}")

        enrollment.enrollment_status = target
        enrollment.enrollment_type = EnrollmentType.HISTORICAL
        enrollment.archived_at = now
        enrollment.archived_reason = reason
        db.session.flush()
        return enrollment
