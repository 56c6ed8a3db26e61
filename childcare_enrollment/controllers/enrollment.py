# controllers/enrollment.py
"""
Student enrollment routes.
JSON endpoints for enrolling, cancelling and managing waitlist places.
"""
from flask import Blueprint, request, jsonify, current_app
from flask_login import current_user

from childcare_enrollment.controllers.forms import EnrollmentRequestForm, form_errors
from childcare_enrollment.services.enrollment_service import EnrollmentService
from childcare_enrollment.services.errors import NotFound, SessionFull
from childcare_enrollment.utils.auth import login_required_json

enrollment_bp = Blueprint('enrollment', __name__, url_prefix='/api/enrollments')


@enrollment_bp.route('/<class_id>', methods=['POST'])
@login_required_json
def enroll(class_id):
    """Enroll the current user in a session of a class."""
    form = EnrollmentRequestForm()

    if not form.validate():
        return jsonify({
            'success': False,
            'message': form_errors(form),
            'error_code': 'validation_error',
            'errors': form.errors
        }), 400

    session_id = form.sessionId.data

    try:
        enrollment = EnrollmentService.enroll(
            student_id=current_user.id,
            class_id=class_id,
            session_id=session_id,
            payment_method=form.paymentMethod.data or None
        )
    except SessionFull as e:
        if not form.joinWaitlistIfFull.data:
            raise

        entry = EnrollmentService.join_waitlist(current_user.id, session_id, class_id=class_id)
        current_app.logger.info(f"Session {session_id} full, {current_user.id} queued at {entry.position}")
        return jsonify({
            'success': True,
            'waitlisted': True,
            'message': f'{e.message}. You have been added to the waitlist at position {entry.position}.',
            'waitlist': entry.to_dict()
        }), 202

    return jsonify({
        'success': True,
        'message': 'Enrollment successful. Your enrollment is pending approval.',
        'enrollment': enrollment.to_dict()
    }), 201


@enrollment_bp.route('/<class_id>', methods=['DELETE'])
@login_required_json
def cancel(class_id):
    """Cancel the current user's enrollment in a class."""
    result = EnrollmentService.cancel(current_user.id, class_id)

    return jsonify({
        'success': True,
        'message': 'Enrollment cancelled successfully',
        'enrollment': result['enrollment'],
        'promoted_student_id': result['promoted_student_id']
    })


@enrollment_bp.route('/my', methods=['GET'])
@login_required_json
def my_enrollments():
    """Active and historical enrollments of the current user."""
    enrollments = EnrollmentService.list_for_student(current_user.id)

    return jsonify({
        'success': True,
        'enrollments': [e.to_dict(include_details=True) for e in enrollments],
        'total': len(enrollments)
    })


@enrollment_bp.route('/waitlist/<class_id>', methods=['GET'])
@login_required_json
def waitlist_status(class_id):
    """Latest waitlist entry of the current user for a class."""
    try:
        entry = EnrollmentService.waitlist_status_for_class(class_id, current_user.id)
    except NotFound:
        # Not being on the waitlist is an ordinary answer
        return jsonify({
            'success': False,
            'message': 'Not on waitlist',
            'error_code': 'not_found'
        }), 404

    return jsonify({'success': True, 'waitlist': entry.to_dict()})


@enrollment_bp.route('/waitlist/<session_id>', methods=['POST'])
@login_required_json
def join_waitlist(session_id):
    data = request.get_json(silent=True) or {}
    entry = EnrollmentService.join_waitlist(current_user.id, session_id, class_id=data.get('classId'))

    return jsonify({
        'success': True,
        'message': f'Added to the waitlist at position {entry.position}',
        'waitlist': entry.to_dict()
    }), 201


@enrollment_bp.route('/waitlist/<session_id>', methods=['DELETE'])
@login_required_json
def leave_waitlist(session_id):
    entry = EnrollmentService.leave_waitlist(current_user.id, session_id)

    if entry is None:
        return jsonify({'success': True, 'message': 'You were not on the waitlist'})

    return jsonify({
        'success': True,
        'message': 'Removed from the waitlist',
        'waitlist': entry.to_dict()
    })
