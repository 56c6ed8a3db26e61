"""Tests for the enrollment coordinator: units of work, events and waitlist promotion."""

from datetime import datetime, timedelta

import pytest

from childcare_enrollment.models import (
    ClassSession, Enrollment, EnrollmentStatus, EnrollmentType, RoleType, TrainingClass,
    WaitlistEntry, WaitlistStatus
)
from childcare_enrollment.services.enrollment_service import EnrollmentService
from childcare_enrollment.services.errors import (
    AlreadyEnrolled, InvalidRequest, InvalidSession, InvalidStateTransition, NotAuthorized,
    NotFound, RoleNotEligible, SessionFull, SessionNotEnrollable
)
from childcare_enrollment.services.session_lifecycle_service import SessionLifecycleService


def seat_count(db, session_id):
    return db.session.get(ClassSession, session_id, populate_existing=True).enrolled_count


def types_of(events):
    return [e['eventType'] for e in events]


def waitlist_status_of(session_id, student_id):
    return EnrollmentService.waitlist_status(session_id, student_id).status


class TestEnroll:

    def test_enroll_creates_pending_enrollment_and_event(self, db, student, make_session, events):
        session = make_session(capacity=5, enrolled_count=1)

        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id, payment_method='EIP')

        assert enrollment.enrollment_status == EnrollmentStatus.PENDING
        assert enrollment.enrollment_type == EnrollmentType.ACTIVE
        assert seat_count(db, session.id) == 2
        assert types_of(events) == ['EnrollmentPending']
        assert events[0]['enrollmentId'] == enrollment.id
        assert events[0]['paymentMethod'] == 'EIP'
        assert events[0]['studentId'] == student.id

    @pytest.mark.parametrize('role', [RoleType.ADMIN, RoleType.INSTRUCTOR])
    def test_staff_cannot_enroll(self, db, make_user, make_session, events, role):
        session = make_session()

        with pytest.raises(RoleNotEligible):
            EnrollmentService.enroll(make_user(role).id, session.class_id, session.id)

        assert seat_count(db, session.id) == 0
        assert events == []

    def test_session_of_another_class_is_invalid(self, db, student, make_session):
        other_class = TrainingClass(title='First Aid')
        db.session.add(other_class)
        db.session.commit()
        session = make_session()

        with pytest.raises(InvalidSession):
            EnrollmentService.enroll(student.id, other_class.id, session.id)

    def test_unknown_session_is_invalid(self, student, training_class):
        with pytest.raises(InvalidSession):
            EnrollmentService.enroll(student.id, training_class.id, 'missing-session')

    def test_started_session_is_not_enrollable(self, student, make_session):
        session = make_session(start_at=datetime.now() - timedelta(minutes=1))

        with pytest.raises(SessionNotEnrollable):
            EnrollmentService.enroll(student.id, session.class_id, session.id)

    def test_invalid_payment_method_is_refused(self, db, student, make_session):
        session = make_session()

        with pytest.raises(InvalidRequest) as exc_info:
            EnrollmentService.enroll(student.id, session.class_id, session.id, payment_method='Cash')

        assert exc_info.value.error_code == 'validation_error'

        assert seat_count(db, session.id) == 0

    def test_second_enroll_in_same_class_fails(self, db, student, make_session, events):
        first, second = make_session(), make_session()
        EnrollmentService.enroll(student.id, first.class_id, first.id)

        with pytest.raises(AlreadyEnrolled):
            EnrollmentService.enroll(student.id, second.class_id, second.id)

        assert seat_count(db, second.id) == 0
        assert types_of(events) == ['EnrollmentPending']

    def test_full_session_raises_session_full_with_waitlist_suggestion(self, db, student, make_session):
        session = make_session(capacity=1, enrolled_count=1)

        with pytest.raises(SessionFull) as exc_info:
            EnrollmentService.enroll(student.id, session.class_id, session.id)

        assert exc_info.value.suggested_action == 'join_waitlist'
        assert Enrollment.query.count() == 0

    def test_enroll_withdraws_other_waitlist_entries_for_the_class(self, db, student, make_user, make_session):
        full = make_session(capacity=1)
        EnrollmentService.enroll(make_user().id, full.class_id, full.id)
        EnrollmentService.join_waitlist(student.id, full.id)

        open_session = make_session(capacity=3)
        EnrollmentService.enroll(student.id, open_session.class_id, open_session.id)

        entry = WaitlistEntry.query.filter_by(student_id=student.id).one()
        assert entry.status == WaitlistStatus.WITHDRAWN


class TestCapacityAndUniqueness:
    """Seat and uniqueness guarantees."""

    def test_more_requests_than_seats(self, db, make_user, make_session):
        capacity, requests = 3, 8
        session = make_session(capacity=capacity)

        outcomes = []
        for _ in range(requests):
            try:
                EnrollmentService.enroll(make_user().id, session.class_id, session.id)
                outcomes.append('ok')
            except SessionFull:
                outcomes.append('full')

        assert outcomes.count('ok') == capacity
        assert outcomes.count('full') == requests - capacity
        assert seat_count(db, session.id) == capacity
        assert Enrollment.query.count() == capacity

    def test_database_constraint_catches_duplicate_that_passed_the_precheck(
            self, db, student, make_session, monkeypatch):
        first, second = make_session(), make_session()
        EnrollmentService.enroll(student.id, first.class_id, first.id)

        # Simulate a concurrent request whose existence check ran before the first insert
        monkeypatch.setattr(EnrollmentService, '_find_active_claim', staticmethod(lambda *args: None))

        with pytest.raises(AlreadyEnrolled):
            EnrollmentService.enroll(student.id, second.class_id, second.id)

        live = Enrollment.query.filter_by(student_id=student.id, enrollment_type=EnrollmentType.ACTIVE).all()
        assert len(live) == 1
        assert seat_count(db, second.id) == 0

    def test_rejected_enrollment_does_not_block_a_new_one(self, db, student, admin, make_session):
        first, second = make_session(), make_session()
        enrollment = EnrollmentService.enroll(student.id, first.class_id, first.id)
        EnrollmentService.reject(enrollment.id, admin.id)

        again = EnrollmentService.enroll(student.id, second.class_id, second.id)

        assert again.enrollment_status == EnrollmentStatus.PENDING


class TestReview:

    def test_approve_pending(self, db, student, admin, make_session, events):
        session = make_session()
        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)

        approved = EnrollmentService.approve(enrollment.id, admin.id, '  Welcome aboard  ')

        assert approved.enrollment_status == EnrollmentStatus.APPROVED
        assert approved.admin_notes == 'Welcome aboard'
        assert types_of(events) == ['EnrollmentPending', 'EnrollmentApproved']
        assert events[-1]['adminNotes'] == 'Welcome aboard'

    def test_approve_requires_admin(self, db, student, make_user, make_session, events):
        session = make_session()
        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)

        with pytest.raises(NotAuthorized):
            EnrollmentService.approve(enrollment.id, make_user(RoleType.INSTRUCTOR).id)

        assert EnrollmentService.get_enrollment(enrollment.id).enrollment_status == EnrollmentStatus.PENDING
        assert types_of(events) == ['EnrollmentPending']

    def test_approve_twice_fails(self, student, admin, make_session):
        session = make_session()
        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)
        EnrollmentService.approve(enrollment.id, admin.id)

        with pytest.raises(InvalidStateTransition):
            EnrollmentService.approve(enrollment.id, admin.id)

    def test_reject_frees_seat(self, db, student, admin, make_session, events):
        session = make_session(capacity=2)
        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)

        EnrollmentService.reject(enrollment.id, admin.id, 'Incomplete application')

        assert seat_count(db, session.id) == 0
        assert types_of(events) == ['EnrollmentPending', 'EnrollmentRejected']

    def test_reset_to_pending(self, db, student, admin, make_session, events):
        session = make_session()
        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)
        EnrollmentService.reject(enrollment.id, admin.id)

        reset = EnrollmentService.reset_to_pending(enrollment.id, admin.id)

        assert reset.enrollment_status == EnrollmentStatus.PENDING
        assert seat_count(db, session.id) == 1
        assert types_of(events)[-1] == 'EnrollmentResetToPending'

    def test_unknown_enrollment(self, admin):
        with pytest.raises(NotFound):
            EnrollmentService.approve('missing', admin.id)


class TestCancel:

    def test_cancel_removes_enrollment_and_frees_seat(self, db, student, make_session, events):
        session = make_session(capacity=2)
        EnrollmentService.enroll(student.id, session.class_id, session.id)

        result = EnrollmentService.cancel(student.id, session.class_id)

        assert result['promoted_student_id'] is None
        assert Enrollment.query.count() == 0
        assert seat_count(db, session.id) == 0
        assert types_of(events) == ['EnrollmentPending', 'EnrollmentCancelled']

    def test_cancel_without_enrollment(self, student, training_class):
        with pytest.raises(NotFound):
            EnrollmentService.cancel(student.id, training_class.id)

    def test_cancel_after_start_is_refused(self, db, student, make_session):
        start = datetime.now() + timedelta(days=1)
        session = make_session(start_at=start)
        EnrollmentService.enroll(student.id, session.class_id, session.id)

        with pytest.raises(SessionNotEnrollable):
            EnrollmentService.cancel(student.id, session.class_id, now=start + timedelta(minutes=5))

        assert seat_count(db, session.id) == 1


class TestWaitlistPromotion:

    def test_full_session_redirects_to_waitlist_and_cancel_promotes(
            self, db, make_user, make_session, events):
        session = make_session(capacity=1)
        enrolled, waiting = make_user(), make_user()
        EnrollmentService.enroll(enrolled.id, session.class_id, session.id)

        with pytest.raises(SessionFull):
            EnrollmentService.enroll(waiting.id, session.class_id, session.id)
        entry = EnrollmentService.join_waitlist(waiting.id, session.id)
        assert entry.position == 1

        result = EnrollmentService.cancel(enrolled.id, session.class_id)

        assert result['promoted_student_id'] == waiting.id
        promoted = Enrollment.query.filter_by(student_id=waiting.id).one()
        assert promoted.enrollment_status == EnrollmentStatus.PENDING
        assert promoted.enrollment_type == EnrollmentType.ACTIVE
        assert WaitlistEntry.query.count() == 0
        assert seat_count(db, session.id) == 1
        assert types_of(events) == [
            'EnrollmentPending', 'WaitlistJoined', 'EnrollmentCancelled', 'WaitlistPromoted'
        ]
        assert events[-1]['enrollmentId'] == promoted.id

    def test_promotion_is_fifo(self, db, admin, make_user, make_session):
        session = make_session(capacity=2)
        holders = [make_user(), make_user()]
        enrollments = [EnrollmentService.enroll(h.id, session.class_id, session.id) for h in holders]
        a, b, c = make_user(), make_user(), make_user()
        for s in (a, b, c):
            EnrollmentService.join_waitlist(s.id, session.id)

        EnrollmentService.reject(enrollments[0].id, admin.id)
        EnrollmentService.cancel(holders[1].id, session.class_id)

        promoted = {e.student_id for e in Enrollment.query.filter_by(
            session_id=session.id, enrollment_status=EnrollmentStatus.PENDING
        )}
        assert promoted == {a.id, b.id}
        assert waitlist_status_of(session.id, c.id) == WaitlistStatus.WAITING
        assert seat_count(db, session.id) == 2

    def test_failed_promotion_expires_entry_and_tries_next(self, db, make_user, make_session, events):
        session = make_session(capacity=1)
        other = make_session(capacity=5)
        holder, conflicted, next_in_line = make_user(), make_user(), make_user()
        EnrollmentService.enroll(holder.id, session.class_id, session.id)
        EnrollmentService.join_waitlist(conflicted.id, session.id)
        EnrollmentService.join_waitlist(next_in_line.id, session.id)

        # The head of the queue gets a live claim in the class through an external path
        db.session.add(Enrollment(
            student_id=conflicted.id, class_id=other.class_id, session_id=other.id,
            enrollment_status=EnrollmentStatus.APPROVED, enrollment_type=EnrollmentType.ACTIVE
        ))
        db.session.commit()

        result = EnrollmentService.cancel(holder.id, session.class_id)

        assert result['promoted_student_id'] == next_in_line.id
        assert waitlist_status_of(session.id, conflicted.id) == WaitlistStatus.EXPIRED
        assert types_of(events)[-2:] == ['WaitlistExpired', 'WaitlistPromoted']

    def test_cascade_terminates_when_every_candidate_fails(self, db, make_user, make_session):
        session = make_session(capacity=1)
        other = make_session(capacity=5)
        holder = make_user()
        EnrollmentService.enroll(holder.id, session.class_id, session.id)
        candidates = [make_user() for _ in range(3)]
        for c in candidates:
            EnrollmentService.join_waitlist(c.id, session.id)
            db.session.add(Enrollment(
                student_id=c.id, class_id=other.class_id, session_id=other.id,
                enrollment_status=EnrollmentStatus.PENDING, enrollment_type=EnrollmentType.ACTIVE
            ))
        db.session.commit()

        result = EnrollmentService.cancel(holder.id, session.class_id)

        assert result['promoted_student_id'] is None
        assert all(waitlist_status_of(session.id, c.id) == WaitlistStatus.EXPIRED for c in candidates)
        assert seat_count(db, session.id) == 0

    def test_promote_next_on_full_session_does_nothing(self, db, make_user, make_session):
        session = make_session(capacity=1)
        EnrollmentService.enroll(make_user().id, session.class_id, session.id)
        waiting = make_user()
        EnrollmentService.join_waitlist(waiting.id, session.id)

        assert EnrollmentService.promote_next(session.id) is None
        assert waitlist_status_of(session.id, waiting.id) == WaitlistStatus.WAITING

    def test_leave_waitlist_publishes_event(self, db, make_user, make_session, events):
        session = make_session(capacity=1)
        EnrollmentService.enroll(make_user().id, session.class_id, session.id)
        waiting = make_user()
        EnrollmentService.join_waitlist(waiting.id, session.id)

        entry = EnrollmentService.leave_waitlist(waiting.id, session.id)

        assert entry.status == WaitlistStatus.WITHDRAWN
        assert types_of(events)[-1] == 'WaitlistLeft'
        assert EnrollmentService.leave_waitlist(waiting.id, session.id) is None

    def test_staff_cannot_join_waitlist(self, make_user, make_session):
        session = make_session(capacity=1, enrolled_count=1)

        with pytest.raises(RoleNotEligible):
            EnrollmentService.join_waitlist(make_user(RoleType.ADMIN).id, session.id)

    def test_admin_removes_waitlist_entry(self, db, admin, make_user, make_session):
        session = make_session(capacity=1, enrolled_count=1)
        entry = EnrollmentService.join_waitlist(make_user().id, session.id)

        removed = EnrollmentService.remove_from_waitlist(entry.id, admin.id)

        assert removed.status == WaitlistStatus.WITHDRAWN
        assert EnrollmentService.list_waitlist(session.id) == []


class TestApproveThenArchive:
    """Enroll, approve, complete the session, then enroll again."""

    def test_scenario(self, db, student, admin, make_session, events):
        session = make_session(capacity=5, enrolled_count=1)

        enrollment = EnrollmentService.enroll(student.id, session.class_id, session.id)
        assert enrollment.enrollment_status == EnrollmentStatus.PENDING
        assert seat_count(db, session.id) == 2

        EnrollmentService.approve(enrollment.id, admin.id)
        SessionLifecycleService.complete_session(session.id)

        archived = EnrollmentService.get_enrollment(enrollment.id)
        assert archived.enrollment_status == EnrollmentStatus.APPROVED
        assert archived.enrollment_type == EnrollmentType.HISTORICAL
        assert archived in EnrollmentService.list_for_student(student.id)

        next_session = make_session()
        again = EnrollmentService.enroll(student.id, next_session.class_id, next_session.id)

        assert again.enrollment_status == EnrollmentStatus.PENDING
        assert 'EnrollmentArchived' in types_of(events)


class TestQueries:

    def test_list_all_for_admin_filters_and_paginates(self, db, admin, make_user, make_session):
        session = make_session(capacity=10)
        enrollments = [EnrollmentService.enroll(make_user().id, session.class_id, session.id) for _ in range(5)]
        EnrollmentService.approve(enrollments[0].id, admin.id)

        page = EnrollmentService.list_all_for_admin({'status': 'pending', 'page': 1, 'limit': 3})
        approved = EnrollmentService.list_all_for_admin({'status': 'approved'})

        assert page['total'] == 4
        assert len(page['enrollments']) == 3
        assert [e.id for e in approved['enrollments']] == [enrollments[0].id]

    def test_list_all_for_admin_limit_is_capped(self, app):
        result = EnrollmentService.list_all_for_admin({'limit': 10_000})

        assert result['limit'] == app.config['ENROLLMENT_MAX_PAGE_SIZE']

    def test_list_all_for_admin_rejects_unknown_status(self, app):
        with pytest.raises(InvalidRequest):
            EnrollmentService.list_all_for_admin({'status': 'enrolled'})

    def test_list_all_for_admin_rejects_bad_paging(self, app):
        with pytest.raises(InvalidRequest):
            EnrollmentService.list_all_for_admin({'page': 'two'})

    def test_date_only_end_covers_the_whole_day(self, make_user, make_session):
        session = make_session(capacity=10)
        day = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        evening = EnrollmentService.enroll(
            make_user().id, session.class_id, session.id, now=day.replace(hour=18, minute=30)
        )
        EnrollmentService.enroll(make_user().id, session.class_id, session.id, now=day + timedelta(days=1, hours=9))

        same_day = EnrollmentService.list_all_for_admin(
            {'start_date': day.date().isoformat(), 'end_date': day.date().isoformat()}
        )

        assert [e.id for e in same_day['enrollments']] == [evening.id]

    def test_end_with_time_of_day_is_exact(self, make_user, make_session):
        session = make_session(capacity=10)
        day = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        EnrollmentService.enroll(make_user().id, session.class_id, session.id, now=day.replace(hour=18, minute=30))

        morning = EnrollmentService.list_all_for_admin({'end_date': day.replace(hour=12).isoformat()})

        assert morning['total'] == 0

    def test_list_pending_oldest_first(self, make_user, make_session):
        session = make_session(capacity=10)
        ids = [EnrollmentService.enroll(make_user().id, session.class_id, session.id).id for _ in range(3)]

        assert [e.id for e in EnrollmentService.list_pending()] == ids
