# services/capacity_ledger.py
"""
Seat ledger for class sessions.

The ledger is the only writer of ``ClassSession.enrolled_count``. Every change
is a single conditional UPDATE so that two requests racing for the last seat
are serialized by the database row lock instead of by application code, and
no lock is held across the enrollment insert that follows a reservation.
"""

import logging
from datetime import datetime

from sqlalchemy import update

from childcare_enrollment.extensions import db
from childcare_enrollment.models.session import ClassSession, SessionStatus
from childcare_enrollment.services.errors import InvalidSession, SessionNotEnrollable

logger = logging.getLogger('capacity_ledger')


class CapacityLedger:
    """Atomic reserve/release of session seats."""

    @staticmethod
    def get_session(session_id, refresh=False):
        """
        Load a session or fail with InvalidSession.

        Args:
            session_id: Session ID
            refresh: Reload column values from the database

        Returns:
            ClassSession: The session
        """
        session = db.session.get(ClassSession, session_id, populate_existing=refresh)
        if session is None:
            raise InvalidSession('Session not found', session_id=session_id)
        return session

    @staticmethod
    def try_reserve(session_id, now=None):
        """
        Take one seat if the session is open and not full.

        Args:
            session_id: Session ID
            now: Reference time for the "already started" check

        Returns:
            bool: True if a seat was reserved, False if the session is full

        Raises:
            InvalidSession: If the session does not exist
            SessionNotEnrollable: If the session has started or is not scheduled
        """
        now = now or datetime.now()

        result = db.session.execute(
            update(ClassSession)
            .where(
                ClassSession.id == session_id,
                ClassSession.status == SessionStatus.SCHEDULED,
                ClassSession.deleted_at.is_(None),
                ClassSession.start_at > now,
                ClassSession.enrolled_count < ClassSession.capacity
            )
            .values(enrolled_count=ClassSession.enrolled_count + 1)
            .execution_options(synchronize_session='fetch')
        )

        if result.rowcount == 1:
            logger.debug(f"Seat reserved in session {session_id}")
            return True

        # Nothing was updated: work out why
        session = CapacityLedger.get_session(session_id, refresh=True)
        if not session.is_enrollable(now):
            raise SessionNotEnrollable(session_id=session_id, status=session.status)

        logger.info(f"Session {session_id} is full ({session.enrolled_count}/{session.capacity})")
        return False

    @staticmethod
    def release(session_id):
        """
        Give back one seat. The count is floored at zero.

        Args:
            session_id: Session ID

        Returns:
            bool: True if the count was decremented, False if it was already zero
        """
        result = db.session.execute(
            update(ClassSession)
            .where(
                ClassSession.id == session_id,
                ClassSession.enrolled_count > 0
            )
            .values(enrolled_count=ClassSession.enrolled_count - 1)
            .execution_options(synchronize_session='fetch')
        )

        if result.rowcount == 1:
            logger.debug(f"Seat released in session {session_id}")
            return True

        # Raises InvalidSession for an unknown id
        CapacityLedger.get_session(session_id)
        logger.warning(f"Release on session {session_id} with no seats held; count stays at 0")
        return False

    @staticmethod
    def is_full(session_id):
        """Read-only check used to route a request to the waitlist."""
        return CapacityLedger.get_session(session_id, refresh=True).is_full()

    @staticmethod
    def get_availability(session_id):
        """
        Seat summary for a session.

        Returns:
            dict: capacity, enrolled_count, seats_remaining, is_full
        """
        session = CapacityLedger.get_session(session_id, refresh=True)
        return {
            'session_id': session.id,
            'capacity': session.capacity,
            'enrolled_count': session.enrolled_count,
            'seats_remaining': session.seats_remaining,
            'is_full': session.is_full(),
            'status': session.status
        }
