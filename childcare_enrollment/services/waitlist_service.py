# services/waitlist_service.py
"""
Per-session FIFO waitlist.

Positions come from a counter on the session row, bumped by a single UPDATE,
so they are strictly increasing and never handed out twice even after the
entries holding them are removed. Nothing in this module commits.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update, exists, and_
from sqlalchemy.exc import IntegrityError

from childcare_enrollment.extensions import db
from childcare_enrollment.models.enrollment import Enrollment, EnrollmentStatus, EnrollmentType
from childcare_enrollment.models.session import ClassSession
from childcare_enrollment.models.waitlist import WaitlistEntry, WaitlistStatus
from childcare_enrollment.services.capacity_ledger import CapacityLedger
from childcare_enrollment.services.errors import (
    AlreadyEnrolled, AlreadyWaitlisted, InvalidSession, NotFound,
    SessionNotEnrollable, SessionNotFull
)

logger = logging.getLogger('waitlist_service')


class WaitlistService:
    """Join, leave and ordering primitives for session waitlists."""

    @staticmethod
    def _next_position(session_id):
        db.session.execute(
            update(ClassSession)
            .where(ClassSession.id == session_id)
            .values(waitlist_sequence=ClassSession.waitlist_sequence + 1)
            .execution_options(synchronize_session='fetch')
        )
        return db.session.execute(
            select(ClassSession.waitlist_sequence).where(ClassSession.id == session_id)
        ).scalar_one()

    @staticmethod
    def get_open_entry(session_id, student_id):
        return db.session.execute(
            select(WaitlistEntry).where(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.student_id == student_id,
                WaitlistEntry.status.in_(WaitlistStatus.OPEN)
            )
        ).scalar_one_or_none()

    @staticmethod
    def join(session_id, student_id, class_id=None, now=None):
        """
        Append a student to a full session's waitlist.

        Args:
            session_id: Session ID
            student_id: Student user ID
            class_id: Optional class the caller believes the session belongs to
            now: Reference time

        Returns:
            WaitlistEntry: The new entry

        Raises:
            InvalidSession: Unknown session or class mismatch
            SessionNotEnrollable: Session started, completed or cancelled
            AlreadyWaitlisted: Student already has an open entry
            AlreadyEnrolled: Student already holds a live enrollment in the class
            SessionNotFull: Seats are still available
        """
        session = CapacityLedger.get_session(session_id, refresh=True)
        if class_id is not None and session.class_id != class_id:
            raise InvalidSession(session_id=session_id, class_id=class_id)

        if not session.is_enrollable(now):
            raise SessionNotEnrollable(session_id=session_id, status=session.status)

        if WaitlistService.get_open_entry(session_id, student_id) is not None:
            raise AlreadyWaitlisted(session_id=session_id, student_id=student_id)

        holds_claim = db.session.query(
            exists().where(and_(
                Enrollment.student_id == student_id,
                Enrollment.class_id == session.class_id,
                Enrollment.enrollment_type == EnrollmentType.ACTIVE,
                Enrollment.enrollment_status.in_(EnrollmentStatus.HOLDS_SEAT)
            ))
        ).scalar()
        if holds_claim:
            raise AlreadyEnrolled(student_id=student_id, class_id=session.class_id)

        if not session.is_full():
            raise SessionNotFull(session_id=session_id, seats_remaining=session.seats_remaining)

        entry = WaitlistEntry(
            student_id=student_id,
            class_id=session.class_id,
            session_id=session_id,
            position=WaitlistService._next_position(session_id),
            status=WaitlistStatus.WAITING,
            joined_at=now or datetime.now()
        )
        db.session.add(entry)

        try:
            db.session.flush()
        except IntegrityError as e:
            raise AlreadyWaitlisted(session_id=session_id, student_id=student_id) from e

        logger.info(f"Student {student_id} joined waitlist of session {session_id} at position {entry.position}")
        return entry

    @staticmethod
    def leave(session_id, student_id):
        """
        Withdraw a student's open entry.

        Returns:
            WaitlistEntry or None: The withdrawn entry, None if there was nothing to withdraw
        """
        entry = WaitlistService.get_open_entry(session_id, student_id)
        if entry is None:
            return None

        WaitlistService.mark_withdrawn(entry, 'Left the waitlist')
        logger.info(f"Student {student_id} left waitlist of session {session_id}")
        return entry

    @staticmethod
    def status_for(session_id, student_id):
        """
        Latest entry for the pair, open or not.

        Raises:
            NotFound: If the student never joined. This is an expected outcome.
        """
        entry = db.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.session_id == session_id, WaitlistEntry.student_id == student_id)
            .order_by(WaitlistEntry.joined_at.desc(), WaitlistEntry.position.desc())
            .limit(1)
        ).scalar_one_or_none()

        if entry is None:
            raise NotFound('Not on waitlist', session_id=session_id)
        return entry

    @staticmethod
    def status_for_class(class_id, student_id):
        """Latest entry for the student across all sessions of a class."""
        entry = db.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.class_id == class_id, WaitlistEntry.student_id == student_id)
            .order_by(WaitlistEntry.joined_at.desc(), WaitlistEntry.position.desc())
            .limit(1)
        ).scalar_one_or_none()

        if entry is None:
            raise NotFound('Not on waitlist', class_id=class_id)
        return entry

    @staticmethod
    def get_entry(entry_id):
        entry = db.session.get(WaitlistEntry, entry_id)
        if entry is None:
            raise NotFound('Waitlist entry not found', entry_id=entry_id)
        return entry

    @staticmethod
    def next_candidate(session_id):
        """Lowest-position waiting entry, or None when the queue is exhausted."""
        return db.session.execute(
            select(WaitlistEntry)
            .where(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.status == WaitlistStatus.WAITING
            )
            .order_by(WaitlistEntry.position.asc())
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def list_for_session(session_id, include_closed=False):
        query = select(WaitlistEntry).where(WaitlistEntry.session_id == session_id)
        if not include_closed:
            query = query.where(WaitlistEntry.status.in_(WaitlistStatus.OPEN))
        return db.session.execute(query.order_by(WaitlistEntry.position.asc())).scalars().all()

    @staticmethod
    def open_entries_for_class(class_id, student_id):
        return db.session.execute(
            select(WaitlistEntry).where(
                WaitlistEntry.class_id == class_id,
                WaitlistEntry.student_id == student_id,
                WaitlistEntry.status.in_(WaitlistStatus.OPEN)
            )
        ).scalars().all()

    @staticmethod
    def mark_offered(entry, now=None):
        entry.status = WaitlistStatus.OFFERED
        entry.offered_at = now or datetime.now()
        db.session.flush()
        return entry

    @staticmethod
    def return_to_queue(entry):
        """Undo an offer that could not be honoured because no seat was left."""
        entry.status = WaitlistStatus.WAITING
        entry.offered_at = None
        db.session.flush()
        return entry

    @staticmethod
    def mark_expired(entry, note=None, now=None):
        entry.status = WaitlistStatus.EXPIRED
        entry.resolved_at = now or datetime.now()
        entry.resolution_note = note
        db.session.flush()
        return entry

    @staticmethod
    def mark_withdrawn(entry, note=None, now=None):
        entry.status = WaitlistStatus.WITHDRAWN
        entry.resolved_at = now or datetime.now()
        entry.resolution_note = note
        db.session.flush()
        return entry

    @staticmethod
    def remove_promoted(entry):
        """A promoted entry is replaced by its enrollment record."""
        db.session.delete(entry)
        db.session.flush()

    @staticmethod
    def find_stale_offers(now=None, window_hours=24):
        """Offered entries whose offer window has elapsed."""
        cutoff = (now or datetime.now()) - timedelta(hours=window_hours)
        return db.session.execute(
            select(WaitlistEntry)
            .where(
                WaitlistEntry.status == WaitlistStatus.OFFERED,
                WaitlistEntry.offered_at < cutoff
            )
            .order_by(WaitlistEntry.offered_at.asc())
        ).scalars().all()
