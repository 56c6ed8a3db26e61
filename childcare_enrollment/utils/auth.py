# utils/auth.py
from functools import wraps
from flask import jsonify
from flask_login import current_user


def login_required_json(f):
    """Decorator that answers JSON 401 instead of redirecting to a login page."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({
                'success': False,
                'message': 'Authentication required',
                'error_code': 'authentication_required'
            }), 401

        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """Decorator to require the admin role."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({
                'success': False,
                'message': 'Authentication required',
                'error_code': 'authentication_required'
            }), 401

        if not current_user.is_admin():
            return jsonify({
                'success': False,
                'message': 'Administrator access required',
                'error_code': 'not_authorized'
            }), 403

        return f(*args, **kwargs)

    return decorated_function
