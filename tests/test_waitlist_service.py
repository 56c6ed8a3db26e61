"""Unit tests for the waitlist queue primitives."""

from datetime import datetime, timedelta

import pytest

from childcare_enrollment.models import WaitlistEntry, WaitlistStatus
from childcare_enrollment.services.enrollment_state import EnrollmentStateMachine
from childcare_enrollment.services.errors import (
    AlreadyEnrolled, AlreadyWaitlisted, InvalidSession, NotFound, SessionNotEnrollable, SessionNotFull
)
from childcare_enrollment.services.waitlist_service import WaitlistService


@pytest.fixture
def full_session(make_session):
    return make_session(capacity=1, enrolled_count=1)


def join(db, session, student):
    entry = WaitlistService.join(session.id, student.id)
    db.session.commit()
    return entry


class TestJoin:

    def test_positions_increase_in_join_order(self, db, full_session, make_user):
        positions = [join(db, full_session, make_user()).position for _ in range(3)]

        assert positions == [1, 2, 3]

    def test_positions_are_not_reused_after_leave(self, db, full_session, make_user):
        first, second = make_user(), make_user()
        join(db, full_session, first)
        join(db, full_session, second)

        WaitlistService.leave(full_session.id, second.id)
        db.session.commit()

        assert join(db, full_session, make_user()).position == 3

    def test_join_twice_fails(self, db, full_session, student):
        join(db, full_session, student)

        with pytest.raises(AlreadyWaitlisted):
            WaitlistService.join(full_session.id, student.id)

    def test_rejoin_after_leaving_is_allowed(self, db, full_session, student):
        join(db, full_session, student)
        WaitlistService.leave(full_session.id, student.id)
        db.session.commit()

        entry = join(db, full_session, student)

        assert entry.status == WaitlistStatus.WAITING
        assert entry.position == 2

    def test_join_on_session_with_seats_fails(self, make_session, student):
        session = make_session(capacity=3, enrolled_count=1)

        with pytest.raises(SessionNotFull) as exc_info:
            WaitlistService.join(session.id, student.id)

        assert exc_info.value.suggested_action == 'enroll'

    def test_join_when_already_enrolled_fails(self, db, make_session, student):
        session = make_session(capacity=1)
        EnrollmentStateMachine.create(student.id, session.class_id, session.id)
        db.session.commit()

        with pytest.raises(AlreadyEnrolled):
            WaitlistService.join(session.id, student.id)

    def test_join_started_session_fails(self, make_session, student):
        session = make_session(capacity=1, enrolled_count=1, start_at=datetime.now() - timedelta(minutes=5))

        with pytest.raises(SessionNotEnrollable):
            WaitlistService.join(session.id, student.id)

    def test_join_with_wrong_class_fails(self, full_session, student):
        with pytest.raises(InvalidSession):
            WaitlistService.join(full_session.id, student.id, class_id='another-class')


class TestLeaveAndStatus:

    def test_leave_marks_withdrawn(self, db, full_session, student):
        join(db, full_session, student)

        entry = WaitlistService.leave(full_session.id, student.id)
        db.session.commit()

        assert entry.status == WaitlistStatus.WITHDRAWN
        assert entry.resolved_at is not None

    def test_leave_without_entry_is_noop(self, full_session, student):
        assert WaitlistService.leave(full_session.id, student.id) is None

    def test_status_for_missing_pair_raises_not_found(self, full_session, student):
        with pytest.raises(NotFound) as exc_info:
            WaitlistService.status_for(full_session.id, student.id)

        assert exc_info.value.message == 'Not on waitlist'

    def test_status_for_returns_latest_entry(self, db, full_session, student):
        join(db, full_session, student)
        WaitlistService.leave(full_session.id, student.id)
        db.session.commit()
        latest = join(db, full_session, student)

        assert WaitlistService.status_for(full_session.id, student.id).id == latest.id
        assert WaitlistService.status_for_class(full_session.class_id, student.id).id == latest.id


class TestOrdering:

    def test_next_candidate_is_lowest_waiting_position(self, db, full_session, make_user):
        a, b, c = make_user(), make_user(), make_user()
        for s in (a, b, c):
            join(db, full_session, s)

        assert WaitlistService.next_candidate(full_session.id).student_id == a.id

        WaitlistService.mark_offered(WaitlistService.next_candidate(full_session.id))
        db.session.commit()

        # Offered entries are not candidates again
        assert WaitlistService.next_candidate(full_session.id).student_id == b.id

    def test_next_candidate_on_empty_queue(self, full_session):
        assert WaitlistService.next_candidate(full_session.id) is None

    def test_list_for_session_hides_closed_entries(self, db, full_session, make_user):
        a, b = make_user(), make_user()
        join(db, full_session, a)
        join(db, full_session, b)
        WaitlistService.leave(full_session.id, a.id)
        db.session.commit()

        open_entries = WaitlistService.list_for_session(full_session.id)
        all_entries = WaitlistService.list_for_session(full_session.id, include_closed=True)

        assert [e.student_id for e in open_entries] == [b.id]
        assert [e.position for e in all_entries] == [1, 2]

    def test_find_stale_offers(self, db, full_session, make_user):
        now = datetime.now()
        old, fresh = join(db, full_session, make_user()), join(db, full_session, make_user())
        WaitlistService.mark_offered(old, now=now - timedelta(hours=30))
        WaitlistService.mark_offered(fresh, now=now - timedelta(hours=2))
        db.session.commit()

        stale = WaitlistService.find_stale_offers(now=now, window_hours=24)

        assert [e.id for e in stale] == [old.id]

    def test_remove_promoted_deletes_entry(self, db, full_session, student):
        entry = join(db, full_session, student)

        WaitlistService.remove_promoted(entry)
        db.session.commit()

        assert WaitlistEntry.query.count() == 0
