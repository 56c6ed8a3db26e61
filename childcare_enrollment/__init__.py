# __init__.py
"""
Application factory for the childcare enrollment engine.
This module creates and configures the Flask application using the application factory pattern.
"""

import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from childcare_enrollment.config import config_by_name
from childcare_enrollment.extensions import (
    init_extensions, validate_notification_config, check_database_health, csrf, db, notification_dispatcher
)
from childcare_enrollment.services.errors import EnrollmentError, NotFound


def setup_logging(app):
    """
    Configure structured logging for the application.

    Args:
        app: Flask application instance
    """
    log_format = logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s'
    )
    level = logging.DEBUG if app.debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_format)
    console_handler.setLevel(level)

    # Service loggers are plain named loggers, so attach to the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(getattr(h, '_enrollment_handler', False) for h in root_logger.handlers):
        console_handler._enrollment_handler = True
        root_logger.addHandler(console_handler)

        if app.config.get('LOG_TO_FILE'):
            log_dir = app.config.get('LOG_DIR', 'logs')
            os.makedirs(log_dir, exist_ok=True)

            # File handler with rotation
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=1024 * 1024 * 10,  # 10MB
                backupCount=5
            )
            file_handler.setFormatter(log_format)
            file_handler.setLevel(logging.INFO)
            file_handler._enrollment_handler = True
            root_logger.addHandler(file_handler)

    app.logger.setLevel(level)

    # Forcefully suppress SQLAlchemy logs
    sa_logger = logging.getLogger('sqlalchemy.engine')
    sa_logger.setLevel(logging.WARNING)
    sa_logger.propagate = False


def register_blueprints(app):
    """
    Register all application blueprints.

    Args:
        app: Flask application instance
    """
    try:
        # Import blueprints here to avoid circular imports
        from .controllers.enrollment import enrollment_bp
        from .controllers.admin import admin_bp

        # JSON API: no form pages hand out tokens, the SameSite session cookie covers cross-site posts
        csrf.exempt(enrollment_bp)
        csrf.exempt(admin_bp)

        app.register_blueprint(enrollment_bp)
        app.register_blueprint(admin_bp)

        app.logger.info("All blueprints registered successfully")

    except ImportError as e:
        app.logger.error(f"Failed to import blueprint: {str(e)}")
        raise


def register_error_handlers(app):
    """
    Register global error handlers.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(EnrollmentError)
    def handle_enrollment_error(e):
        if isinstance(e, NotFound):
            app.logger.debug(f"{e.error_code}: {e.message}")
        else:
            app.logger.info(f"Request refused ({e.error_code}): {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({
                'success': False,
                'message': e.description,
                'error_code': e.name.lower().replace(' ', '_')
            }), e.code

        app.logger.error(f"Unhandled exception: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'message': str(e) if app.debug else 'Internal server error',
            'error_code': 'internal_error'
        }), 500

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify({'success': False, 'message': 'Resource not found', 'error_code': 'not_found'}), 404

    @app.errorhandler(500)
    def handle_500(e):
        app.logger.error(f"Internal server error: {str(e)}")
        return jsonify({'success': False, 'message': 'Internal server error', 'error_code': 'internal_error'}), 500


def register_shell_context(app):
    """
    Register shell context for flask shell command.

    Args:
        app: Flask application instance
    """

    @app.shell_context_processor
    def make_shell_context():
        from childcare_enrollment.models import (
            User, TrainingClass, ClassSession, Enrollment, WaitlistEntry
        )
        from childcare_enrollment.services import EnrollmentService, SessionLifecycleService
        return {
            'db': db,
            'User': User,
            'TrainingClass': TrainingClass,
            'ClassSession': ClassSession,
            'Enrollment': Enrollment,
            'WaitlistEntry': WaitlistEntry,
            'EnrollmentService': EnrollmentService,
            'SessionLifecycleService': SessionLifecycleService,
            'notification_dispatcher': notification_dispatcher
        }


def register_health_checks(app):
    """
    Register health check endpoints.

    Args:
        app: Flask application instance
    """

    @app.route('/health')
    def health_check():
        """Basic health check endpoint."""
        healthy, message = check_database_health()
        return jsonify({
            'status': 'ok' if healthy else 'degraded',
            'database': message,
            'timestamp': datetime.now().isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        }), 200 if healthy else 503

    @app.route('/health/notifications')
    def notification_health_check():
        """Notification dispatcher health check endpoint."""
        try:
            config_issues = validate_notification_config(app)
            stats = notification_dispatcher.get_queue_stats()

            running = stats['synchronous'] or stats['worker_alive']
            status = 'healthy' if not config_issues and running else 'degraded'

            return jsonify({
                'status': status,
                'config_issues': config_issues,
                'worker_thread': 'running' if stats['worker_alive'] else 'stopped',
                'stats': stats,
                'timestamp': datetime.now().isoformat()
            })

        except Exception as e:
            app.logger.error(f"Notification health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }), 503


def create_app(config_name=None):
    """
    Application factory function.

    Args:
        config_name (str): Configuration name ('development', 'production', 'testing')

    Returns:
        Flask: Configured Flask application instance
    """
    # Load environment variables
    load_dotenv()

    app = Flask(__name__)

    # Load configuration
    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    app.config.from_object(config_by_name[config_name]())

    # Setup logging first
    setup_logging(app)
    app.logger.info(f"Starting application with config: {config_name}")

    # Initialize extensions
    init_extensions(app)

    # Validate notification configuration
    notification_issues = validate_notification_config(app)
    if notification_issues:
        app.logger.warning(f"Notification configuration issues: {'; '.join(notification_issues)}")
    else:
        app.logger.info("Notification configuration validated successfully")

    # Register components
    register_blueprints(app)
    register_error_handlers(app)
    register_shell_context(app)
    register_health_checks(app)

    # Register CLI commands
    from .cli import register_cli_commands
    register_cli_commands(app)

    app.logger.info("Application factory completed successfully")

    return app
