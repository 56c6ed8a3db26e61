# controllers/admin.py
"""
Admin enrollment management routes.
Review queue, approval/rejection, waitlist administration and session lifecycle.
"""
from flask import Blueprint, request, jsonify, current_app
from flask_login import current_user

from childcare_enrollment.controllers.forms import ReviewForm, form_errors
from childcare_enrollment.services.enrollment_service import EnrollmentService
from childcare_enrollment.services.errors import InvalidRequest
from childcare_enrollment.services.session_lifecycle_service import SessionLifecycleService
from childcare_enrollment.utils.auth import admin_required

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin/enrollments')


def _notes_from_request():
    form = ReviewForm()
    if not form.validate():
        raise InvalidRequest(form_errors(form))
    return form.adminNotes.data or None


@admin_bp.route('/', methods=['GET'])
@admin_required
def list_enrollments():
    """Filterable, paginated list of all enrollments."""
    filters = {
        'status': request.args.get('status'),
        'class_id': request.args.get('classId'),
        'student_id': request.args.get('studentId'),
        'enrollment_type': request.args.get('type'),
        'start_date': request.args.get('startDate'),
        'end_date': request.args.get('endDate'),
        'page': request.args.get('page', 1, type=int),
        'limit': request.args.get('limit', type=int)
    }

    result = EnrollmentService.list_all_for_admin(filters)
    page, limit, total = result['page'], result['limit'], result['total']

    return jsonify({
        'success': True,
        'enrollments': [e.to_dict(include_details=True) for e in result['enrollments']],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'has_prev': page > 1,
            'has_next': (page * limit) < total
        }
    })


@admin_bp.route('/pending', methods=['GET'])
@admin_required
def pending_enrollments():
    enrollments = EnrollmentService.list_pending()

    return jsonify({
        'success': True,
        'enrollments': [e.to_dict(include_details=True) for e in enrollments],
        'total': len(enrollments)
    })


@admin_bp.route('/<enrollment_id>', methods=['GET'])
@admin_required
def enrollment_detail(enrollment_id):
    enrollment = EnrollmentService.get_enrollment(enrollment_id)
    return jsonify({'success': True, 'enrollment': enrollment.to_dict(include_details=True)})


@admin_bp.route('/<enrollment_id>/approve', methods=['PUT'])
@admin_required
def approve_enrollment(enrollment_id):
    """Approve a pending enrollment."""
    enrollment = EnrollmentService.approve(enrollment_id, current_user.id, _notes_from_request())

    return jsonify({
        'success': True,
        'message': 'Enrollment approved successfully',
        'enrollment': enrollment.to_dict()
    })


@admin_bp.route('/<enrollment_id>/reject', methods=['PUT'])
@admin_required
def reject_enrollment(enrollment_id):
    """Reject a pending enrollment. The freed seat is offered to the waitlist."""
    enrollment = EnrollmentService.reject(enrollment_id, current_user.id, _notes_from_request())

    return jsonify({
        'success': True,
        'message': 'Enrollment rejected successfully',
        'enrollment': enrollment.to_dict()
    })


@admin_bp.route('/<enrollment_id>/pending', methods=['POST'])
@admin_required
def reset_enrollment(enrollment_id):
    enrollment = EnrollmentService.reset_to_pending(enrollment_id, current_user.id, _notes_from_request())

    return jsonify({
        'success': True,
        'message': 'Enrollment set back to pending',
        'enrollment': enrollment.to_dict()
    })


@admin_bp.route('/sessions/<session_id>/waitlist', methods=['GET'])
@admin_required
def session_waitlist(session_id):
    include_closed = request.args.get('includeClosed', 'false').lower() == 'true'
    entries = EnrollmentService.list_waitlist(session_id, include_closed=include_closed)

    return jsonify({
        'success': True,
        'session': SessionLifecycleService.session_summary(session_id),
        'waitlist': [entry.to_dict() for entry in entries],
        'total': len(entries)
    })


@admin_bp.route('/waitlist/<entry_id>', methods=['DELETE'])
@admin_required
def remove_waitlist_entry(entry_id):
    entry = EnrollmentService.remove_from_waitlist(entry_id, current_user.id, _notes_from_request())

    return jsonify({
        'success': True,
        'message': 'Waitlist entry removed',
        'waitlist': entry.to_dict()
    })


@admin_bp.route('/sessions/<session_id>/complete', methods=['POST'])
@admin_required
def complete_session(session_id):
    """Mark a session completed and archive its enrollments."""
    result = SessionLifecycleService.complete_session(session_id)
    current_app.logger.info(f"Session {session_id} completed by {current_user.id}")

    return jsonify({
        'success': True,
        'message': f"Session completed. {result['archived']} enrollments archived.",
        'result': result
    })


@admin_bp.route('/sessions/<session_id>', methods=['DELETE'])
@admin_required
def delete_session(session_id):
    result = SessionLifecycleService.delete_session(session_id, current_user.id)

    return jsonify({
        'success': True,
        'message': f"Session deleted. {result['archived']} enrollments moved to history.",
        'result': result
    })
