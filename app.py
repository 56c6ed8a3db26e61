# app.py
"""
Main application entry point.
This module creates the Flask application instance and handles application startup.
"""

import os

from childcare_enrollment import create_app
from childcare_enrollment.extensions import notification_dispatcher


def create_application():
    """
    Create and configure the Flask application.

    Returns:
        Flask: Configured application instance
    """
    # Get configuration from environment
    config_name = os.environ.get('FLASK_ENV', 'development')

    # Create application using factory
    app = create_app(config_name)

    # Additional production-specific setup
    if config_name == 'production':
        setup_production_features(app)

    return app


def setup_production_features(app):
    """
    Setup production-specific features.

    Args:
        app: Flask application instance
    """
    # Gunicorn forks after import; make sure the worker thread lives in this process
    if not notification_dispatcher.synchronous and (
            not notification_dispatcher.worker_thread or not notification_dispatcher.worker_thread.is_alive()):
        notification_dispatcher.start_worker()
        app.logger.info("Notification worker restarted for production")

    # Setup additional production logging
    import logging
    from logging.handlers import SysLogHandler

    if app.config.get('SYSLOG_SERVER'):
        syslog_handler = SysLogHandler(address=app.config['SYSLOG_SERVER'])
        syslog_handler.setLevel(logging.ERROR)
        app.logger.addHandler(syslog_handler)

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    app.logger.info("Production features configured")


# Create the application instance
app = create_application()


# Development server configuration
if __name__ == '__main__':
    # Only run directly in development
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_ENV') == 'development'

    app.logger.info(f"Starting development server on port {port}, debug={debug}")

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        threaded=True
    )
