# services/errors.py
"""
Error kinds raised by the enrollment engine.

Every kind carries a stable ``error_code`` and the HTTP status the JSON
controllers answer with. They subclass ValueError so callers that only care
about "the request was refused" can keep catching ValueError.
"""


class EnrollmentError(ValueError):
    """Base exception for enrollment engine errors."""

    error_code = 'enrollment_error'
    http_status = 400
    default_message = 'Enrollment request could not be completed'
    suggested_action = None

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self):
        result = {
            'success': False,
            'error_code': self.error_code,
            'message': self.message
        }
        if self.suggested_action:
            result['suggested_action'] = self.suggested_action
        if self.context:
            result['details'] = self.context
        return result


class RoleNotEligible(EnrollmentError):
    """Raised when an admin or instructor attempts to enroll."""

    error_code = 'role_not_eligible'
    http_status = 403
    default_message = 'Admins and instructors are not allowed to enroll in classes.'


class NotAuthorized(EnrollmentError):
    """Raised when a non-admin attempts an administrative transition."""

    error_code = 'not_authorized'
    http_status = 403
    default_message = 'Administrator access required'


class InvalidSession(EnrollmentError):
    """Raised when the session is missing or belongs to another class."""

    error_code = 'invalid_session'
    default_message = 'Invalid session for this class'


class SessionNotEnrollable(EnrollmentError):
    """Raised when the session has started or is no longer scheduled."""

    error_code = 'session_not_enrollable'
    default_message = 'Session has already started or is no longer open'


class AlreadyEnrolled(EnrollmentError):
    """Raised when the student already holds a live enrollment in the class."""

    error_code = 'already_enrolled'
    http_status = 409
    default_message = 'You are already enrolled in this class'


class SessionFull(EnrollmentError):
    """Raised when no seat is left. The caller should offer the waitlist."""

    error_code = 'session_full'
    http_status = 409
    default_message = 'Session is full'
    suggested_action = 'join_waitlist'


class AlreadyWaitlisted(EnrollmentError):
    """Raised when the student is already queued for the session."""

    error_code = 'already_waitlisted'
    http_status = 409
    default_message = 'You are already on the waitlist for this session'


class SessionNotFull(EnrollmentError):
    """Raised when a waitlist join is attempted while seats are open."""

    error_code = 'session_not_full'
    http_status = 409
    default_message = 'Session still has open seats; enroll directly instead'
    suggested_action = 'enroll'


class InvalidStateTransition(EnrollmentError):
    """Raised when a transition is not allowed from the record's current state."""

    error_code = 'invalid_state_transition'
    default_message = 'Enrollment cannot move to the requested state'


class NotFound(EnrollmentError):
    """Raised on a lookup miss. Often an expected outcome, so not logged as a failure."""

    error_code = 'not_found'
    http_status = 404
    default_message = 'Not found'


class InvalidRequest(EnrollmentError):
    """Raised when request values fail validation before any state is touched."""

    error_code = 'validation_error'
    default_message = 'Invalid request'
