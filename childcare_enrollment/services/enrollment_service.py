# services/enrollment_service.py
"""
Enrollment coordinator.

Public entry point of the engine. Each mutating call is one unit of work:
ledger and record writes are committed together or rolled back together, and
the resulting domain event is handed to the notification dispatcher only after
the commit. Notification problems are logged and never undo an enrollment.
"""

import logging
from datetime import date, datetime, time, timedelta

from flask import current_app
from sqlalchemy import select, func

from childcare_enrollment.extensions import db, notification_dispatcher
from childcare_enrollment.models.enrollment import (
    Enrollment, EnrollmentStatus, EnrollmentType, PaymentMethod
)
from childcare_enrollment.models.user import User
from childcare_enrollment.models.waitlist import WaitlistStatus
from childcare_enrollment.services.capacity_ledger import CapacityLedger
from childcare_enrollment.services.enrollment_state import EnrollmentStateMachine
from childcare_enrollment.services.errors import (
    AlreadyEnrolled, EnrollmentError, InvalidRequest, InvalidSession, NotAuthorized, NotFound, RoleNotEligible,
    SessionFull, SessionNotEnrollable
)
from childcare_enrollment.services.events import DomainEvent, EventType
from childcare_enrollment.services.waitlist_service import WaitlistService


def _parse_date(value):
    """
    Parse an ISO date or datetime filter value.

    Returns:
        tuple: (datetime or None, True when the value carried no time of day)
    """
    if value is None or isinstance(value, datetime):
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, time.min), True

    text = str(value).strip()
    parsed = datetime.fromisoformat(text)
    return parsed, len(text) == 10


class EnrollmentService:
    """Service class for enrollment, review and waitlist operations."""

    # ===============================
    # HELPERS
    # ===============================

    @staticmethod
    def _publish(event, batch_id=None):
        """Hand an event to the dispatcher. Never raises."""
        try:
            return notification_dispatcher.publish(event, batch_id=batch_id)
        except Exception as e:
            logging.getLogger('enrollment_service').error(
                f"Failed to publish {event.event_type} for student {event.student_id}: {str(e)}"
            )
            return None

    @staticmethod
    def _log_refusal(operation, error):
        logger = logging.getLogger('enrollment_service')
        if isinstance(error, NotFound):
            logger.debug(f"{operation}: {error.message}")
        else:
            logger.info(f"{operation} refused ({error.error_code}): {error.message}")

    @staticmethod
    def _get_user(user_id):
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound('User not found', user_id=user_id)
        return user

    @staticmethod
    def _require_student(student_id):
        student = EnrollmentService._get_user(student_id)
        if student.is_staff():
            raise RoleNotEligible(role=student.role)
        return student

    @staticmethod
    def _require_admin(admin_id):
        admin = EnrollmentService._get_user(admin_id)
        if not admin.is_admin():
            raise NotAuthorized(user_id=admin_id)
        return admin

    @staticmethod
    def _find_active_claim(student_id, class_id):
        return db.session.execute(
            select(Enrollment).where(
                Enrollment.student_id == student_id,
                Enrollment.class_id == class_id,
                Enrollment.enrollment_type == EnrollmentType.ACTIVE,
                Enrollment.enrollment_status.in_(EnrollmentStatus.HOLDS_SEAT)
            )
        ).scalar_one_or_none()

    # ===============================
    # STUDENT OPERATIONS
    # ===============================

    @staticmethod
    def _enroll_unit(student_id, class_id, session_id, payment_method=None, promoted_entry=None, now=None):
        """
        Checks and writes for one enrollment; the caller commits or rolls back.

        Returns:
            Enrollment: The new pending record (flushed, not committed)
        """
        EnrollmentService._require_student(student_id)

        if payment_method is not None and payment_method not in PaymentMethod.ALL:
            raise InvalidRequest(
                f"Payment method must be one of: {', '.join(PaymentMethod.ALL)}",
                payment_method=payment_method
            )

        session = CapacityLedger.get_session(session_id, refresh=True)
        if session.class_id != class_id:
            raise InvalidSession(session_id=session_id, class_id=class_id)
        if not session.is_enrollable(now):
            raise SessionNotEnrollable(session_id=session_id, status=session.status)

        # Fast path only; the partial unique index is the authoritative check
        if EnrollmentService._find_active_claim(student_id, class_id) is not None:
            raise AlreadyEnrolled(student_id=student_id, class_id=class_id)

        enrollment = EnrollmentStateMachine.create(
            student_id=student_id,
            class_id=class_id,
            session_id=session_id,
            payment_method=payment_method,
            payment_status=current_app.config.get('DEFAULT_PAYMENT_STATUS'),
            now=now
        )

        # Other open waitlist entries for this class are no longer needed
        for entry in WaitlistService.open_entries_for_class(class_id, student_id):
            if promoted_entry is not None and entry.id == promoted_entry.id:
                WaitlistService.remove_promoted(entry)
            else:
                WaitlistService.mark_withdrawn(entry, 'Enrolled in the class')

        return enrollment

    @staticmethod
    def enroll(student_id, class_id, session_id, payment_method=None, now=None):
        """
        Enroll a student in a session of a class.

        Args:
            student_id: Student user ID (the acting user)
            class_id: Class ID
            session_id: Session ID, must belong to the class
            payment_method: Optional 'Self' or 'EIP'
            now: Reference time for the "already started" checks

        Returns:
            Enrollment: The committed Pending+Active enrollment

        Raises:
            RoleNotEligible, InvalidSession, SessionNotEnrollable,
            AlreadyEnrolled, SessionFull (caller should offer the waitlist)
        """
        logger = logging.getLogger('enrollment_service')

        try:
            enrollment = EnrollmentService._enroll_unit(
                student_id, class_id, session_id, payment_method=payment_method, now=now
            )
            db.session.commit()

        except EnrollmentError as e:
            db.session.rollback()
            EnrollmentService._log_refusal('Enroll', e)
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to enroll student {student_id} in class {class_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Enrollment {enrollment.id} created: student={student_id}, class={class_id}, session={session_id}")
        EnrollmentService._publish(DomainEvent.for_enrollment(EventType.ENROLLMENT_PENDING, enrollment))
        return enrollment

    @staticmethod
    def cancel(student_id, class_id, now=None):
        """
        Cancel the student's live enrollment in a class and offer the freed seat.

        Returns:
            dict: cancelled enrollment snapshot and the promoted student id (or None)

        Raises:
            NotFound: If the student holds no live enrollment in the class
            SessionNotEnrollable: If the session has already started
        """
        logger = logging.getLogger('enrollment_service')

        try:
            enrollment = EnrollmentService._find_active_claim(student_id, class_id)
            if enrollment is None:
                raise NotFound('Enrollment not found', student_id=student_id, class_id=class_id)

            if enrollment.session.has_started(now):
                raise SessionNotEnrollable(
                    'Cannot cancel enrollment for a class that has already started',
                    session_id=enrollment.session_id
                )

            snapshot = enrollment.to_dict()
            event = DomainEvent.for_enrollment(EventType.ENROLLMENT_CANCELLED, enrollment)
            session_id = enrollment.session_id

            EnrollmentStateMachine.cancel(enrollment)
            db.session.commit()

        except EnrollmentError as e:
            db.session.rollback()
            EnrollmentService._log_refusal('Cancel', e)
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to cancel enrollment of {student_id} in class {class_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Enrollment {snapshot['id']} cancelled by student {student_id}")
        EnrollmentService._publish(event)

        promoted = EnrollmentService.promote_next(session_id, now=now)
        return {'enrollment': snapshot, 'promoted_student_id': promoted}

    @staticmethod
    def join_waitlist(student_id, session_id, class_id=None, now=None):
        """
        Queue a student for a full session.

        Returns:
            WaitlistEntry: The committed entry with its position
        """
        logger = logging.getLogger('enrollment_service')

        try:
            EnrollmentService._require_student(student_id)
            entry = WaitlistService.join(session_id, student_id, class_id=class_id, now=now)
            db.session.commit()

        except EnrollmentError as e:
            db.session.rollback()
            EnrollmentService._log_refusal('Join waitlist', e)
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to add student {student_id} to waitlist of {session_id}: {str(e)}", exc_info=True)
            raise

        EnrollmentService._publish(DomainEvent.for_waitlist_entry(EventType.WAITLIST_JOINED, entry))
        return entry

    @staticmethod
    def leave_waitlist(student_id, session_id):
        """
        Withdraw from a session's waitlist. A no-op if the student is not queued.

        Returns:
            WaitlistEntry or None
        """
        logger = logging.getLogger('enrollment_service')

        try:
            entry = WaitlistService.leave(session_id, student_id)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to remove student {student_id} from waitlist of {session_id}: {str(e)}", exc_info=True)
            raise

        if entry is not None:
            EnrollmentService._publish(DomainEvent.for_waitlist_entry(EventType.WAITLIST_LEFT, entry))
        return entry

    @staticmethod
    def waitlist_status(session_id, student_id):
        """Latest waitlist entry for the pair. Raises NotFound, which callers treat as benign."""
        return WaitlistService.status_for(session_id, student_id)

    @staticmethod
    def waitlist_status_for_class(class_id, student_id):
        return WaitlistService.status_for_class(class_id, student_id)

    # ===============================
    # WAITLIST PROMOTION
    # ===============================

    @staticmethod
    def promote_next(session_id, now=None):
        """
        Offer a freed seat to the head of the session's waitlist.

        Each candidate is marked offered and then enrolled on their behalf. If
        that enrollment fails the entry is expired and the next candidate is
        tried, so the loop ends when the queue is exhausted or one promotion
        succeeds. When the seat itself is gone (taken by a direct enrollment,
        or the session closed) the offer is returned to the queue and the
        cascade stops.

        Returns:
            str or None: The promoted student's id
        """
        logger = logging.getLogger('enrollment_service')

        while True:
            try:
                session = CapacityLedger.get_session(session_id, refresh=True)
                if not session.is_enrollable(now) or session.is_full():
                    db.session.rollback()
                    return None

                entry = WaitlistService.next_candidate(session_id)
                if entry is None:
                    db.session.rollback()
                    return None

                WaitlistService.mark_offered(entry, now=now)
                db.session.commit()

            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to offer seat in session {session_id}: {str(e)}", exc_info=True)
                raise

            entry_id = entry.id
            student_id = entry.student_id

            try:
                enrollment = EnrollmentService._enroll_unit(
                    student_id, entry.class_id, session_id, promoted_entry=entry, now=now
                )
                db.session.commit()

            except (SessionFull, SessionNotEnrollable) as e:
                db.session.rollback()
                logger.info(f"Seat in session {session_id} no longer available for {student_id}: {e.error_code}")
                EnrollmentService._requeue_offer(entry_id)
                return None

            except EnrollmentError as e:
                db.session.rollback()
                logger.info(
                    f"Promotion of student {student_id} in session {session_id} failed "
                    f"({e.error_code}); trying next candidate"
                )
                expired = EnrollmentService._expire_offer(entry_id, f"Promotion failed: {e.error_code}")
                if expired is not None:
                    EnrollmentService._publish(
                        DomainEvent.for_waitlist_entry(EventType.WAITLIST_EXPIRED, expired)
                    )
                continue

            except Exception as e:
                db.session.rollback()
                logger.error(f"Promotion in session {session_id} failed: {str(e)}", exc_info=True)
                EnrollmentService._requeue_offer(entry_id)
                raise

            logger.info(f"Student {student_id} promoted from waitlist into session {session_id}")
            event = DomainEvent(
                event_type=EventType.WAITLIST_PROMOTED,
                student_id=student_id,
                class_id=enrollment.class_id,
                session_id=session_id,
                enrollment_id=enrollment.id
            )
            EnrollmentService._publish(event)
            return student_id

    @staticmethod
    def _requeue_offer(entry_id):
        try:
            entry = WaitlistService.get_entry(entry_id)
            if entry.status == WaitlistStatus.OFFERED:
                WaitlistService.return_to_queue(entry)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logging.getLogger('enrollment_service').error(
                f"Failed to return waitlist entry {entry_id} to the queue: {str(e)}"
            )

    @staticmethod
    def _expire_offer(entry_id, note):
        try:
            entry = WaitlistService.get_entry(entry_id)
            WaitlistService.mark_expired(entry, note)
            db.session.commit()
            return entry
        except Exception as e:
            db.session.rollback()
            logging.getLogger('enrollment_service').error(
                f"Failed to expire waitlist entry {entry_id}: {str(e)}", exc_info=True
            )
            raise

    # ===============================
    # ADMIN REVIEW
    # ===============================

    @staticmethod
    def get_enrollment(enrollment_id):
        enrollment = db.session.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFound('Enrollment not found', enrollment_id=enrollment_id)
        return enrollment

    @staticmethod
    def _review(operation, transition, event_type, enrollment_id, admin_id, notes):
        logger = logging.getLogger('enrollment_service')

        try:
            EnrollmentService._require_admin(admin_id)
            enrollment = EnrollmentService.get_enrollment(enrollment_id)
            transition(enrollment, admin_id, notes.strip() if notes else None)
            db.session.commit()

        except EnrollmentError as e:
            db.session.rollback()
            EnrollmentService._log_refusal(operation, e)
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"{operation} failed for enrollment {enrollment_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"{operation}: enrollment {enrollment_id} is now {enrollment.enrollment_status} (by {admin_id})")
        EnrollmentService._publish(DomainEvent.for_enrollment(event_type, enrollment))
        return enrollment

    @staticmethod
    def approve(enrollment_id, admin_id, notes=None):
        """Approve a pending enrollment."""
        return EnrollmentService._review(
            'Approve', EnrollmentStateMachine.approve, EventType.ENROLLMENT_APPROVED,
            enrollment_id, admin_id, notes
        )

    @staticmethod
    def reject(enrollment_id, admin_id, notes=None):
        """Reject a pending enrollment, free its seat and offer it to the waitlist."""
        enrollment = EnrollmentService._review(
            'Reject', EnrollmentStateMachine.reject, EventType.ENROLLMENT_REJECTED,
            enrollment_id, admin_id, notes
        )
        EnrollmentService.promote_next(enrollment.session_id)
        return enrollment

    @staticmethod
    def reset_to_pending(enrollment_id, admin_id, notes=None):
        """Admin override of a decided enrollment back to pending."""
        return EnrollmentService._review(
            'Reset to pending', EnrollmentStateMachine.reset_to_pending, EventType.ENROLLMENT_RESET_TO_PENDING,
            enrollment_id, admin_id, notes
        )

    @staticmethod
    def remove_from_waitlist(entry_id, admin_id, notes=None):
        """Admin removal of a waitlist entry."""
        logger = logging.getLogger('enrollment_service')

        try:
            EnrollmentService._require_admin(admin_id)
            entry = WaitlistService.get_entry(entry_id)
            if not entry.is_open:
                db.session.rollback()
                return entry
            WaitlistService.mark_withdrawn(entry, notes or f"Removed by administrator {admin_id}")
            db.session.commit()

        except EnrollmentError as e:
            db.session.rollback()
            EnrollmentService._log_refusal('Remove from waitlist', e)
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to remove waitlist entry {entry_id}: {str(e)}", exc_info=True)
            raise

        EnrollmentService._publish(DomainEvent.for_waitlist_entry(EventType.WAITLIST_LEFT, entry))
        return entry

    # ===============================
    # QUERIES
    # ===============================

    @staticmethod
    def list_for_student(student_id):
        """All of a student's enrollments, active and historical, newest first."""
        return db.session.execute(
            select(Enrollment)
            .where(Enrollment.student_id == student_id)
            .order_by(Enrollment.enrolled_at.desc())
        ).scalars().all()

    @staticmethod
    def list_pending():
        """Active enrollments awaiting review, oldest first."""
        return db.session.execute(
            select(Enrollment)
            .where(
                Enrollment.enrollment_type == EnrollmentType.ACTIVE,
                Enrollment.enrollment_status == EnrollmentStatus.PENDING
            )
            .order_by(Enrollment.enrolled_at.asc())
        ).scalars().all()

    @staticmethod
    def list_all_for_admin(filters=None):
        """
        Filterable, paginated listing for review screens.

        Args:
            filters: dict with optional status, class_id, student_id,
                enrollment_type, start_date, end_date, page, limit

        Returns:
            dict: enrollments, total, page, limit
        """
        filters = filters or {}
        default_limit = current_app.config.get('ENROLLMENT_PAGE_SIZE', 20)
        max_limit = current_app.config.get('ENROLLMENT_MAX_PAGE_SIZE', 100)

        try:
            page = max(int(filters.get('page') or 1), 1)
            limit = min(max(int(filters.get('limit') or default_limit), 1), max_limit)
        except (TypeError, ValueError):
            raise InvalidRequest('Page and limit must be whole numbers')

        query = select(Enrollment)

        if filters.get('status'):
            if filters['status'] not in EnrollmentStatus.ALL:
                raise InvalidRequest(f"Unknown status filter: {filters['status']}")
            query = query.where(Enrollment.enrollment_status == filters['status'])
        if filters.get('class_id'):
            query = query.where(Enrollment.class_id == filters['class_id'])
        if filters.get('student_id'):
            query = query.where(Enrollment.student_id == filters['student_id'])
        if filters.get('enrollment_type'):
            query = query.where(Enrollment.enrollment_type == filters['enrollment_type'])

        try:
            start_date, _ = _parse_date(filters.get('start_date'))
            end_date, end_is_day = _parse_date(filters.get('end_date'))
        except ValueError:
            raise InvalidRequest('Dates must be in ISO format (YYYY-MM-DD)')

        if start_date:
            query = query.where(Enrollment.enrolled_at >= start_date)
        if end_date:
            if end_is_day:
                # A bare date covers the whole day
                query = query.where(Enrollment.enrolled_at < end_date + timedelta(days=1))
            else:
                query = query.where(Enrollment.enrolled_at <= end_date)

        total = db.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()

        enrollments = db.session.execute(
            query.order_by(Enrollment.enrolled_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return {
            'enrollments': enrollments,
            'total': total,
            'page': page,
            'limit': limit
        }

    @staticmethod
    def list_waitlist(session_id, include_closed=False):
        CapacityLedger.get_session(session_id)
        return WaitlistService.list_for_session(session_id, include_closed=include_closed)
