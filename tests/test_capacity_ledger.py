"""Unit tests for the capacity ledger."""

from datetime import datetime, timedelta

import pytest

from childcare_enrollment.models import SessionStatus
from childcare_enrollment.services.capacity_ledger import CapacityLedger
from childcare_enrollment.services.errors import InvalidSession, SessionNotEnrollable


class TestTryReserve:
    """Tests for seat reservation."""

    def test_reserve_increments_count(self, db, make_session):
        session = make_session(capacity=5, enrolled_count=1)

        assert CapacityLedger.try_reserve(session.id) is True
        db.session.commit()

        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 2

    def test_reserve_on_full_session_returns_false_without_mutation(self, db, make_session):
        session = make_session(capacity=2, enrolled_count=2)

        assert CapacityLedger.try_reserve(session.id) is False
        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 2

    def test_reserve_never_exceeds_capacity(self, db, make_session):
        session = make_session(capacity=3)

        results = [CapacityLedger.try_reserve(session.id) for _ in range(7)]
        db.session.commit()

        assert results.count(True) == 3
        assert results.count(False) == 4
        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 3

    def test_reserve_on_started_session_fails(self, make_session):
        session = make_session(start_at=datetime.now() - timedelta(hours=1))

        with pytest.raises(SessionNotEnrollable):
            CapacityLedger.try_reserve(session.id)

    def test_reserve_honours_reference_time(self, make_session):
        start = datetime.now() + timedelta(days=1)
        session = make_session(start_at=start)

        with pytest.raises(SessionNotEnrollable):
            CapacityLedger.try_reserve(session.id, now=start + timedelta(minutes=1))

    @pytest.mark.parametrize('status', [SessionStatus.COMPLETED, SessionStatus.CANCELLED])
    def test_reserve_on_non_scheduled_session_fails(self, make_session, status):
        session = make_session(status=status)

        with pytest.raises(SessionNotEnrollable):
            CapacityLedger.try_reserve(session.id)

    def test_reserve_on_unknown_session_fails(self, app):
        with pytest.raises(InvalidSession):
            CapacityLedger.try_reserve('missing-session')

    def test_rollback_undoes_reservation(self, db, make_session):
        session = make_session(capacity=2)

        CapacityLedger.try_reserve(session.id)
        db.session.rollback()

        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 0


class TestRelease:
    """Tests for seat release."""

    def test_release_decrements_count(self, db, make_session):
        session = make_session(capacity=3, enrolled_count=2)

        assert CapacityLedger.release(session.id) is True
        db.session.commit()

        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 1

    def test_release_at_zero_stays_at_zero(self, db, make_session):
        session = make_session(capacity=3, enrolled_count=0)

        assert CapacityLedger.release(session.id) is False
        assert CapacityLedger.release(session.id) is False
        db.session.commit()

        assert CapacityLedger.get_session(session.id, refresh=True).enrolled_count == 0

    def test_release_on_unknown_session_fails(self, app):
        with pytest.raises(InvalidSession):
            CapacityLedger.release('missing-session')


class TestReadAccessors:

    def test_is_full(self, make_session):
        assert CapacityLedger.is_full(make_session(capacity=1, enrolled_count=1).id) is True
        assert CapacityLedger.is_full(make_session(capacity=2, enrolled_count=1).id) is False

    def test_get_availability(self, make_session):
        session = make_session(capacity=4, enrolled_count=1)

        availability = CapacityLedger.get_availability(session.id)

        assert availability['capacity'] == 4
        assert availability['enrolled_count'] == 1
        assert availability['seats_remaining'] == 3
        assert availability['is_full'] is False
        assert availability['status'] == SessionStatus.SCHEDULED
