# cli.py
"""
Flask CLI commands for the enrollment engine.
Scheduled sweeps (session completion, offer expiry, reminders) run through these commands.
"""

from datetime import datetime

import click
from flask import current_app
from flask.cli import with_appcontext

from childcare_enrollment.extensions import db


@click.command("init-db")
@with_appcontext
def init_database():
    """Create all database tables."""
    try:
        db.create_all()
        click.echo("Database tables created.")

    except Exception as e:
        click.echo(f"Database initialization failed: {str(e)}", err=True)
        raise


@click.command("create-user")
@click.option("--email", prompt=True, help="Email address")
@click.option("--first-name", prompt=True, help="First name")
@click.option("--last-name", prompt=True, help="Last name")
@click.option("--role", type=click.Choice(['student', 'instructor', 'admin']), default='student',
              show_default=True, help="Account role")
@with_appcontext
def create_user(email, first_name, last_name, role):
    """Create a user account."""
    from childcare_enrollment.models import User

    try:
        if User.query.filter_by(email=email).first():
            click.echo(f"Error: a user with email '{email}' already exists", err=True)
            return

        user = User(email=email, first_name=first_name, last_name=last_name, role=role)
        db.session.add(user)
        db.session.commit()

        click.echo(f"User '{user.full_name}' created with role {role}.")
        click.echo(f"   ID: {user.id}")

    except Exception as e:
        db.session.rollback()
        click.echo(f"Error creating user: {str(e)}", err=True)
        raise


@click.command("archive-completed-sessions")
@click.option("--dry-run", is_flag=True, help="Show what would be done without making changes")
@with_appcontext
def archive_completed_sessions(dry_run):
    """
    Complete every session whose end time has passed and archive its enrollments.

    Example usage:
        flask archive-completed-sessions            # Run the sweep
        flask archive-completed-sessions --dry-run  # List the sessions that would be completed
    """
    from childcare_enrollment.services.session_lifecycle_service import SessionLifecycleService

    try:
        summary = SessionLifecycleService.sweep_completed_sessions(now=datetime.now(), dry_run=dry_run)

        if dry_run:
            click.echo(f"{summary['sessions']} sessions have ended and would be completed:")
            for session_id in summary['session_ids']:
                click.echo(f"   {session_id}")
            click.echo("\nDRY RUN - No changes were made. Run without --dry-run to apply changes.")
            return

        click.echo(f"Sessions completed: {summary['sessions'] - len(summary['failed'])}")
        click.echo(f"Enrollments archived: {summary['archived']}")
        click.echo(f"Waitlist entries expired: {summary['expired_waitlist']}")

        if summary['failed']:
            click.echo("Sessions that could not be completed:", err=True)
            for session_id in summary['failed']:
                click.echo(f"   {session_id}", err=True)

    except Exception as e:
        click.echo(f"Error archiving completed sessions: {str(e)}", err=True)
        raise


@click.command("expire-waitlist-offers")
@click.option("--hours", type=int, default=None, help="Offer window in hours (defaults to configuration)")
@with_appcontext
def expire_waitlist_offers(hours):
    """Expire waitlist offers that were not taken up within the offer window."""
    from childcare_enrollment.services.session_lifecycle_service import SessionLifecycleService

    try:
        window = hours if hours is not None else current_app.config['WAITLIST_OFFER_WINDOW_HOURS']
        expired = SessionLifecycleService.expire_stale_offers(window_hours=window)
        click.echo(f"Expired {expired} waitlist offers older than {window} hours.")

    except Exception as e:
        click.echo(f"Error expiring waitlist offers: {str(e)}", err=True)
        raise


@click.command("send-session-reminders")
@click.option("--hours", type=int, default=None, help="Look-ahead window in hours (defaults to configuration)")
@click.option("--dry-run", is_flag=True, help="List the enrollments that would be reminded")
@with_appcontext
def send_session_reminders(hours, dry_run):
    """
    Remind approved students of sessions starting within the window.

    Example usage:
        flask send-session-reminders            # Run daily from cron
        flask send-session-reminders --dry-run  # Preview without sending
    """
    from childcare_enrollment.services.session_lifecycle_service import SessionLifecycleService

    try:
        window = hours if hours is not None else current_app.config['SESSION_REMINDER_WINDOW_HOURS']
        result = SessionLifecycleService.send_session_reminders(
            now=datetime.now(), window_hours=window, dry_run=dry_run
        )

        if dry_run:
            click.echo(f"{result['reminded']} enrollments would be reminded:")
            for enrollment_id in result['enrollment_ids']:
                click.echo(f"   {enrollment_id}")
            click.echo("\nDRY RUN - No reminders were sent.")
            return

        click.echo(f"Sent {result['reminded']} reminders for sessions starting in the next {window} hours.")

    except Exception as e:
        click.echo(f"Error sending session reminders: {str(e)}", err=True)
        raise


@click.command("notification-status")
@with_appcontext
def notification_status_command():
    """Check the status of the notification dispatcher."""
    from childcare_enrollment.extensions import notification_dispatcher, validate_notification_config

    try:
        config_issues = validate_notification_config(current_app)
        stats = notification_dispatcher.get_queue_stats()

        click.echo("Notification Dispatcher Status:")
        if stats['synchronous']:
            click.echo("   Mode: synchronous")
        else:
            click.echo(f"   Worker Thread: {'Running' if stats['worker_alive'] else 'Stopped'}")
        click.echo(f"   Queue Size: {stats['queue_size']}")
        click.echo(f"   Handlers: {len(notification_dispatcher.handlers)}")

        if config_issues:
            click.echo("   Configuration Issues:")
            for issue in config_issues:
                click.echo(f"     - {issue}")
        else:
            click.echo("   Configuration: OK")

        click.echo("   Notification Statistics:")
        click.echo(f"     Total: {stats['total']}")
        click.echo(f"     Sent: {stats['sent']}")
        click.echo(f"     Failed: {stats['failed']}")
        click.echo(f"     Queued: {stats['queued']}")

    except Exception as e:
        click.echo(f"Error checking notification status: {str(e)}", err=True)
        raise


def register_cli_commands(app):
    """
    Register all CLI commands with the Flask application.

    Args:
        app: Flask application instance
    """
    app.cli.add_command(init_database)
    app.cli.add_command(create_user)
    app.cli.add_command(archive_completed_sessions)
    app.cli.add_command(expire_waitlist_offers)
    app.cli.add_command(send_session_reminders)
    app.cli.add_command(notification_status_command)


# # Initialize system
# flask init-db
#
# # Create an admin account
# flask create-user --email admin@example.com --first-name Jane --last-name Admin --role admin
#
# # Scheduled sweeps (cron)
# flask archive-completed-sessions
# flask expire-waitlist-offers
# flask send-session-reminders
#
# # Monitor
# flask notification-status
