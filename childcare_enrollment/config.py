import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class with all settings as static attributes."""

    # Core configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'
    DEBUG = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'

    # Session cookie settings
    PERMANENT_SESSION_LIFETIME = timedelta(hours=2)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Database configuration
    base_db_uri = os.environ.get('DATABASE_URL')

    # Fallback to SQLite if no DATABASE_URL is provided
    if not base_db_uri:
        base_db_uri = 'sqlite:///enrollment.db'

    # Heroku style URLs still use the deprecated scheme
    if base_db_uri.startswith('postgres://'):
        base_db_uri = base_db_uri.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = base_db_uri

    # Disable track modifications for performance
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Check connection health before use
    }

    # Logging
    LOG_TO_FILE = os.environ.get('LOG_TO_FILE', 'false').lower() == 'true'
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')

    # Enrollment settings
    DEFAULT_PAYMENT_STATUS = 'paid'
    ENROLLMENT_PAGE_SIZE = 20
    ENROLLMENT_MAX_PAGE_SIZE = 100

    # Waitlist offers that are not converted within this window are expired by the sweep
    WAITLIST_OFFER_WINDOW_HOURS = int(os.environ.get('WAITLIST_OFFER_WINDOW_HOURS', 24))

    # Approved students are reminded of sessions starting within this window
    SESSION_REMINDER_WINDOW_HOURS = int(os.environ.get('SESSION_REMINDER_WINDOW_HOURS', 24))

    # Notification dispatch
    NOTIFICATIONS_SYNCHRONOUS = False
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get('NOTIFICATION_MAX_ATTEMPTS', 3))
    NOTIFICATION_RETRY_BASE_DELAY = 2  # seconds, doubled on every attempt
    NOTIFICATION_RETRY_MAX_DELAY = 60

    # Finished delivery statuses are kept for inspection, then dropped
    NOTIFICATION_STATUS_RETENTION_MINUTES = int(os.environ.get('NOTIFICATION_STATUS_RETENTION_MINUTES', 60))
    NOTIFICATION_STATUS_MAX = 10000

    VERSION = '1.0.0'


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    SQLALCHEMY_ECHO = os.environ.get('SQL_DEBUG', 'false').lower() == 'true'


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    LOG_TO_FILE = True
    SYSLOG_SERVER = os.environ.get('SYSLOG_SERVER')

    def __init__(self):
        # Checked on instantiation so that importing this module never fails
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not os.environ.get('DATABASE_URL'):
            raise ValueError("DATABASE_URL environment variable must be set in production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WTF_CSRF_ENABLED = False
    SESSION_COOKIE_SECURE = False

    # Deliver events inline so tests can assert on them
    NOTIFICATIONS_SYNCHRONOUS = True
    NOTIFICATION_RETRY_BASE_DELAY = 0


# Configuration dictionary
config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}
