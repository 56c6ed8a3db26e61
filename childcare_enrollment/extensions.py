# extensions.py
"""
Flask extensions initialization.
This file initializes all Flask extensions to avoid circular imports.
Extensions are initialized here and then bound to the app in the application factory.
"""

import logging

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect
from flask_login import LoginManager
from sqlalchemy import event, text

from childcare_enrollment.utils.notifications import NotificationDispatcher

# Initialize extensions without app binding
db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
login_manager = LoginManager()
notification_dispatcher = NotificationDispatcher()

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(engine):
    """
    SQLite ignores foreign keys unless asked per connection.

    Args:
        engine: SQLAlchemy engine instance
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def check_database_health():
    """
    Check if the database connection is healthy.
    This function requires an active Flask application context.

    Returns:
        tuple: (bool, str) indicating health status and message
    """
    try:
        with db.engine.connect() as connection:
            connection.execute(text("SELECT 1")).fetchone()
        return True, "Database connection is healthy"

    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False, f"Database connection failed: {str(e)}"


def init_extensions(app):
    """
    Initialize all extensions with proper order and configuration.

    Args:
        app: Flask application instance
    """
    # Step 1: Initialize database first (required by other extensions)
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
            enable_sqlite_foreign_keys(db.engine)

    # Step 2: Initialize Flask-Login
    login_manager.init_app(app)
    login_manager.session_protection = 'basic'

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({
            'success': False,
            'message': 'Authentication required',
            'error_code': 'authentication_required'
        }), 401

    # Step 3: Initialize CSRF protection (after login manager)
    csrf.init_app(app)

    # Step 4: Initialize notification dispatcher
    notification_dispatcher.init_app(app)

    # Step 5: Define user_loader callback (requires db and User model)
    @login_manager.user_loader
    def load_user(user_id):
        # Import here to avoid circular imports
        from childcare_enrollment.models import User

        return db.session.get(User, user_id)

    app.logger.info("Extensions initialized successfully in correct order")


def validate_notification_config(app):
    """
    Validate notification configuration on startup.

    Args:
        app: Flask application instance

    Returns:
        list: List of configuration issues found
    """
    issues = []

    if app.config.get('NOTIFICATION_MAX_ATTEMPTS', 0) < 1:
        issues.append("NOTIFICATION_MAX_ATTEMPTS must be at least 1 for at-least-once delivery")

    if app.config.get('NOTIFICATIONS_SYNCHRONOUS') and not app.config.get('TESTING'):
        issues.append("NOTIFICATIONS_SYNCHRONOUS=True makes request handlers wait on notification delivery")

    if not notification_dispatcher.handlers:
        issues.append("No notification handlers registered")

    return issues
