from .capacity_ledger import CapacityLedger
from .enrollment_state import EnrollmentStateMachine, EnrollmentEvent
from .waitlist_service import WaitlistService
from .enrollment_service import EnrollmentService
from .session_lifecycle_service import SessionLifecycleService
from .events import DomainEvent, EventType
from .errors import (
    EnrollmentError, RoleNotEligible, NotAuthorized, InvalidSession, SessionNotEnrollable,
    AlreadyEnrolled, SessionFull, AlreadyWaitlisted, SessionNotFull, InvalidStateTransition,
    NotFound, InvalidRequest
)

__all__ = [
    'CapacityLedger',
    'EnrollmentStateMachine',
    'EnrollmentEvent',
    'WaitlistService',
    'EnrollmentService',
    'SessionLifecycleService',
    'DomainEvent',
    'EventType',
    'EnrollmentError',
    'RoleNotEligible',
    'NotAuthorized',
    'InvalidSession',
    'SessionNotEnrollable',
    'AlreadyEnrolled',
    'SessionFull',
    'AlreadyWaitlisted',
    'SessionNotFull',
    'InvalidStateTransition',
    'NotFound',
    'InvalidRequest',
]
