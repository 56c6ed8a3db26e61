"""Pytest configuration and shared fixtures.

Every test gets a fresh application bound to an in-memory SQLite database,
with notifications delivered synchronously to a recording handler.
"""

from datetime import datetime, timedelta

import pytest

from childcare_enrollment import create_app
from childcare_enrollment.extensions import db as _db, notification_dispatcher
from childcare_enrollment.models import (
    User, RoleType, TrainingClass, ClassSession, SessionStatus
)


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app():
    """Create an application with empty tables."""
    app = create_app('testing')

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def events():
    """Record every delivered notification payload.

    Returns:
        List that receives payload dicts in delivery order.
    """
    received = []

    def record(payload):
        received.append(payload)

    notification_dispatcher.register_handler(record)
    yield received
    notification_dispatcher.unregister_handler(record)


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def make_user(db):
    """Create users with a given role."""
    counter = {'n': 0}

    def _make_user(role=RoleType.STUDENT, first_name=None):
        counter['n'] += 1
        user = User(
            email=f"{role}{counter['n']}@example.com",
            first_name=first_name or f"{role.title()}{counter['n']}",
            last_name='Tester',
            role=role
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def student(make_user):
    return make_user(RoleType.STUDENT)


@pytest.fixture
def admin(make_user):
    return make_user(RoleType.ADMIN)


@pytest.fixture
def training_class(db):
    training_class = TrainingClass(
        title='Infant and Toddler Care',
        description='Foundations of infant and toddler care',
        location_details='Room 101'
    )
    db.session.add(training_class)
    db.session.commit()
    return training_class


@pytest.fixture
def make_session(db, training_class):
    """Create sessions of the default class, starting a week from now unless told otherwise."""

    def _make_session(capacity=5, enrolled_count=0, start_at=None, end_at=None,
                      status=SessionStatus.SCHEDULED, class_id=None):
        start_at = start_at or datetime.now() + timedelta(days=7)
        session = ClassSession(
            class_id=class_id or training_class.id,
            start_at=start_at,
            end_at=end_at or start_at + timedelta(hours=3),
            capacity=capacity,
            enrolled_count=enrolled_count,
            status=status
        )
        db.session.add(session)
        db.session.commit()
        return session

    return _make_session


@pytest.fixture
def login(client):
    """Log a user in on the test client through the Flask-Login session keys."""

    def _login(user):
        with client.session_transaction() as sess:
            sess['_user_id'] = user.id
            sess['_fresh'] = True
        return client

    return _login
