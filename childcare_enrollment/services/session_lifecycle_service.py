# services/session_lifecycle_service.py
"""
Session lifecycle: completion sweep, soft deletion, offer expiry and start reminders.

These are the only paths that move enrollments to the historical store. They
are driven by the scheduled CLI commands or by an administrator, never at
read time.
"""

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select

from childcare_enrollment.extensions import db, notification_dispatcher
from childcare_enrollment.models.enrollment import Enrollment, EnrollmentStatus, EnrollmentType
from childcare_enrollment.models.session import ClassSession, SessionStatus
from childcare_enrollment.models.user import User
from childcare_enrollment.models.waitlist import WaitlistEntry, WaitlistStatus
from childcare_enrollment.services.capacity_ledger import CapacityLedger
from childcare_enrollment.services.enrollment_state import EnrollmentStateMachine
from childcare_enrollment.services.errors import EnrollmentError, NotAuthorized, NotFound, SessionNotEnrollable
from childcare_enrollment.services.events import DomainEvent, EventType
from childcare_enrollment.services.waitlist_service import WaitlistService


class SessionLifecycleService:
    """Service class for session completion, deletion, waitlist offer expiry and reminders."""

    @staticmethod
    def _active_enrollments(session_id):
        return db.session.execute(
            select(Enrollment)
            .where(
                Enrollment.session_id == session_id,
                Enrollment.enrollment_type == EnrollmentType.ACTIVE
            )
            .order_by(Enrollment.enrolled_at.asc())
        ).scalars().all()

    @staticmethod
    def _open_waitlist(session_id):
        return db.session.execute(
            select(WaitlistEntry)
            .where(
                WaitlistEntry.session_id == session_id,
                WaitlistEntry.status.in_(WaitlistStatus.OPEN)
            )
            .order_by(WaitlistEntry.position.asc())
        ).scalars().all()

    @staticmethod
    def _publish_all(events, batch_id=None):
        logger = logging.getLogger('session_lifecycle')
        for event in events:
            try:
                notification_dispatcher.publish(event, batch_id=batch_id)
            except Exception as e:
                logger.error(f"Failed to publish {event.event_type} for student {event.student_id}: {str(e)}")

    @staticmethod
    def _archive_session(session, reason, waitlist_status, now):
        """
        Archive every active enrollment of a session and close its waitlist.

        Returns:
            tuple: (archived enrollments, closed waitlist entries)
        """
        archived = []
        for enrollment in SessionLifecycleService._active_enrollments(session.id):
            EnrollmentStateMachine.archive(enrollment, reason, now=now)
            archived.append(enrollment)

        closed = []
        for entry in SessionLifecycleService._open_waitlist(session.id):
            if waitlist_status == WaitlistStatus.EXPIRED:
                WaitlistService.mark_expired(entry, reason, now=now)
            else:
                WaitlistService.mark_withdrawn(entry, reason, now=now)
            closed.append(entry)

        return archived, closed

    @staticmethod
    def complete_session(session_id, now=None):
        """
        Mark a session completed and archive its enrollments.

        Approved records become Approved+Historical. Pending ones are closed as
        rejected with a note first; open waitlist entries expire.

        Args:
            session_id: Session ID
            now: Reference time

        Returns:
            dict: session_id, archived, expired_waitlist

        Raises:
            NotFound: If the session does not exist
            SessionNotEnrollable: If the session was deleted or cancelled
        """
        logger = logging.getLogger('session_lifecycle')
        now = now or datetime.now()

        try:
            session = db.session.get(ClassSession, session_id)
            if session is None:
                raise NotFound('Session not found', session_id=session_id)
            if session.is_deleted or session.status == SessionStatus.CANCELLED:
                raise SessionNotEnrollable('Cancelled sessions cannot be completed', session_id=session_id)

            session.status = SessionStatus.COMPLETED
            archived, expired = SessionLifecycleService._archive_session(
                session, 'Session completed', WaitlistStatus.EXPIRED, now
            )
            db.session.commit()

        except EnrollmentError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to complete session {session_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Session {session_id} completed: {len(archived)} enrollments archived, "
                    f"{len(expired)} waitlist entries expired")

        events = [DomainEvent.for_enrollment(EventType.ENROLLMENT_ARCHIVED, e) for e in archived]
        events += [DomainEvent.for_waitlist_entry(EventType.WAITLIST_EXPIRED, e) for e in expired]
        SessionLifecycleService._publish_all(events, batch_id=f"complete-{session_id}")

        return {
            'session_id': session_id,
            'archived': len(archived),
            'expired_waitlist': len(expired)
        }

    @staticmethod
    def find_sessions_to_complete(now=None):
        """Scheduled, non-deleted sessions whose end time has passed."""
        return db.session.execute(
            select(ClassSession)
            .where(
                ClassSession.status == SessionStatus.SCHEDULED,
                ClassSession.deleted_at.is_(None),
                ClassSession.end_at <= (now or datetime.now())
            )
            .order_by(ClassSession.end_at.asc())
        ).scalars().all()

    @staticmethod
    def sweep_completed_sessions(now=None, dry_run=False):
        """
        Complete every session that has ended.

        Each session is its own unit of work so one failure does not hold
        back the rest of the sweep.

        Returns:
            dict: sessions, archived, expired_waitlist, failed
        """
        logger = logging.getLogger('session_lifecycle')
        now = now or datetime.now()

        session_ids = [s.id for s in SessionLifecycleService.find_sessions_to_complete(now)]
        summary = {'sessions': len(session_ids), 'archived': 0, 'expired_waitlist': 0, 'failed': []}

        if dry_run:
            db.session.rollback()
            summary['session_ids'] = session_ids
            return summary

        for session_id in session_ids:
            try:
                result = SessionLifecycleService.complete_session(session_id, now=now)
                summary['archived'] += result['archived']
                summary['expired_waitlist'] += result['expired_waitlist']
            except Exception as e:
                logger.error(f"Sweep could not complete session {session_id}: {str(e)}")
                summary['failed'].append(session_id)

        logger.info(f"Completion sweep finished: {summary['sessions']} sessions, "
                    f"{summary['archived']} enrollments archived, {len(summary['failed'])} failed")
        return summary

    @staticmethod
    def delete_session(session_id, admin_id, now=None):
        """
        Soft-delete a session.

        Enrollments are preserved in the historical store rather than removed,
        and open waitlist entries are withdrawn.

        Returns:
            dict: session_id, archived, withdrawn_waitlist
        """
        logger = logging.getLogger('session_lifecycle')
        now = now or datetime.now()

        try:
            admin = db.session.get(User, admin_id)
            if admin is None or not admin.is_admin():
                raise NotAuthorized(user_id=admin_id)

            session = db.session.get(ClassSession, session_id)
            if session is None or session.is_deleted:
                raise NotFound('Session not found', session_id=session_id)

            archived, withdrawn = SessionLifecycleService._archive_session(
                session, 'Session deleted', WaitlistStatus.WITHDRAWN, now
            )
            session.status = SessionStatus.CANCELLED
            session.deleted_at = now
            db.session.commit()

        except EnrollmentError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to delete session {session_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Session {session_id} deleted by {admin_id}: {len(archived)} enrollments archived")

        events = [DomainEvent.for_enrollment(EventType.ENROLLMENT_ARCHIVED, e) for e in archived]
        events += [DomainEvent.for_waitlist_entry(EventType.WAITLIST_LEFT, e) for e in withdrawn]
        SessionLifecycleService._publish_all(events, batch_id=f"delete-{session_id}")

        return {
            'session_id': session_id,
            'archived': len(archived),
            'withdrawn_waitlist': len(withdrawn)
        }

    @staticmethod
    def expire_stale_offers(now=None, window_hours=None):
        """
        Expire offered entries that were not converted within the offer window.

        Returns:
            int: Number of entries expired
        """
        logger = logging.getLogger('session_lifecycle')
        if window_hours is None:
            window_hours = current_app.config.get('WAITLIST_OFFER_WINDOW_HOURS', 24)

        try:
            stale = WaitlistService.find_stale_offers(now=now, window_hours=window_hours)
            for entry in stale:
                WaitlistService.mark_expired(entry, f"Offer not taken up within {window_hours} hours", now=now)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to expire stale waitlist offers: {str(e)}", exc_info=True)
            raise

        if stale:
            logger.info(f"Expired {len(stale)} stale waitlist offers")
        SessionLifecycleService._publish_all(
            [DomainEvent.for_waitlist_entry(EventType.WAITLIST_EXPIRED, e) for e in stale]
        )
        return len(stale)

    @staticmethod
    def find_enrollments_to_remind(now=None, window_hours=24):
        """Approved active enrollments in sessions starting within the window that have not been reminded."""
        now = now or datetime.now()
        return db.session.execute(
            select(Enrollment)
            .join(ClassSession, Enrollment.session_id == ClassSession.id)
            .where(
                Enrollment.enrollment_type == EnrollmentType.ACTIVE,
                Enrollment.enrollment_status == EnrollmentStatus.APPROVED,
                Enrollment.reminder_sent_at.is_(None),
                ClassSession.status == SessionStatus.SCHEDULED,
                ClassSession.deleted_at.is_(None),
                ClassSession.start_at > now,
                ClassSession.start_at <= now + timedelta(hours=window_hours)
            )
            .order_by(ClassSession.start_at.asc(), Enrollment.enrolled_at.asc())
        ).scalars().all()

    @staticmethod
    def send_session_reminders(now=None, window_hours=None, dry_run=False):
        """
        Publish a SessionReminder for every approved student whose session starts soon.

        Each enrollment is reminded once: it is stamped in the same commit that
        selects it, and the events are published after that commit.

        Args:
            now: Reference time
            window_hours: Look-ahead window, defaults to SESSION_REMINDER_WINDOW_HOURS
            dry_run: Report what would be sent without stamping or publishing

        Returns:
            dict: reminded count, plus enrollment_ids on a dry run
        """
        logger = logging.getLogger('session_lifecycle')
        now = now or datetime.now()
        if window_hours is None:
            window_hours = current_app.config.get('SESSION_REMINDER_WINDOW_HOURS', 24)

        try:
            due = SessionLifecycleService.find_enrollments_to_remind(now=now, window_hours=window_hours)

            if dry_run:
                enrollment_ids = [e.id for e in due]
                db.session.rollback()
                return {'reminded': len(enrollment_ids), 'enrollment_ids': enrollment_ids}

            for enrollment in due:
                enrollment.reminder_sent_at = now
            db.session.commit()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to prepare session reminders: {str(e)}", exc_info=True)
            raise

        if due:
            logger.info(f"Sending {len(due)} session reminders for the next {window_hours} hours")
        SessionLifecycleService._publish_all(
            [DomainEvent.for_enrollment(EventType.SESSION_REMINDER, e) for e in due],
            batch_id=f"reminders-{now:%Y%m%d%H%M}"
        )
        return {'reminded': len(due)}

    @staticmethod
    def session_summary(session_id):
        """Seat and waitlist summary for admin screens."""
        summary = CapacityLedger.get_availability(session_id)
        summary['waitlist_length'] = len(SessionLifecycleService._open_waitlist(session_id))
        return summary
