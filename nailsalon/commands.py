import click
from flask import current_app
from sqlalchemy import select

from nailsalon.extensions import db
from nailsalon.models import AdminUser
from nailsalon.services.notification_service import NotificationService
from nailsalon.services.reminders import (
    send_appointment_reminders,
    send_scheduled_notifications,
)
from nailsalon.utils.auth import hash_password
from nailsalon.utils.validation import ValidationError, validate_email


@click.command("create-admin")
@click.argument("email")
@click.argument("password")
@click.option("--name", default="Admin", help="Display name of the admin.")
def create_admin_command(email, password, name):
    """Create an admin account that can log in to the API."""
    try:
        validate_email(email)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="EMAIL")
    if len(password) < 8:
        raise click.BadParameter("must be at least 8 characters", param_hint="PASSWORD")

    if db.session.scalar(select(AdminUser.id).where(AdminUser.email == email)) is not None:
        raise click.ClickException(f"An admin with email {email} already exists")

    admin = AdminUser(email=email, password_hash=hash_password(password), name=name)
    db.session.add(admin)
    db.session.commit()
    click.echo(f"Created admin {email} (id {admin.id})")


@click.command("send-reminders")
def send_reminders_command():
    """Send due appointment reminders and follow-ups once."""
    counts = send_appointment_reminders(NotificationService.from_app())
    click.echo(
        "Reminders: {reminder_24h} x 24h, {reminder_2h} x 2h, {follow_up} follow-ups".format(
            **counts
        )
    )


@click.command("send-scheduled-notifications")
def send_scheduled_notifications_command():
    """Send pending notifications whose scheduled time has passed."""
    counts = send_scheduled_notifications(NotificationService.from_app())
    click.echo("Scheduled notifications: {due} due, {sent} sent, {failed} failed".format(**counts))


@click.command("create-tables")
def create_tables_command():
    """Create every table that does not exist yet."""
    db.create_all()
    current_app.logger.info("Tables created for %s", db.engine.url.render_as_string())
    click.echo("Tables created")


def register_commands(app):
    for command in (
        create_admin_command,
        send_reminders_command,
        send_scheduled_notifications_command,
        create_tables_command,
    ):
        app.cli.add_command(command)
