import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import select

from nailsalon.extensions import db
from nailsalon.models import Appointment, Notification, Reminder
from nailsalon.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def _without_reminder(stmt, reminder_type):
    already = select(Reminder.id).where(
        Reminder.appointment_id == Appointment.id, Reminder.type == reminder_type
    )
    return stmt.where(~already.exists())


def _record(appointment, reminder_type, notification, now, summary):
    sent = notification is not None and notification.status == "sent"
    db.session.add(
        Reminder(
            appointment_id=appointment.id,
            type=reminder_type,
            scheduled_for=now,
            status="sent" if sent else "failed",
            sent_at=now if sent else None,
            message=notification.message if notification is not None else summary,
            channel="whatsapp",
        )
    )


def send_appointment_reminders(
    service: NotificationService, now: Optional[datetime] = None
) -> Dict[str, int]:
    """
    24h and 2h reminders for confirmed appointments plus a follow-up for
    yesterday's completed ones. Each appointment receives each kind once.
    """
    now = now or datetime.now()
    counts = {"reminder_24h": 0, "reminder_2h": 0, "follow_up": 0}

    tomorrow = (now + timedelta(days=1)).date()
    day_start = datetime.combine(tomorrow, datetime.min.time())
    stmt = select(Appointment).where(
        Appointment.status == "confirmed",
        Appointment.scheduled_at >= day_start,
        Appointment.scheduled_at < day_start + timedelta(days=1),
    )
    for appointment in db.session.scalars(_without_reminder(stmt, "reminder_24h")).all():
        notification = service.send_appointment_reminder(appointment, "reminder_24h")
        _record(appointment, "reminder_24h", notification, now, "24h reminder")
        counts["reminder_24h"] += 1

    in_two_hours = now + timedelta(hours=2)
    stmt = select(Appointment).where(
        Appointment.status == "confirmed",
        Appointment.scheduled_at >= in_two_hours - timedelta(minutes=30),
        Appointment.scheduled_at <= in_two_hours + timedelta(minutes=30),
    )
    for appointment in db.session.scalars(_without_reminder(stmt, "reminder_2h")).all():
        notification = service.send_appointment_reminder(appointment, "reminder_2h")
        _record(appointment, "reminder_2h", notification, now, "2h reminder")
        counts["reminder_2h"] += 1

    yesterday = datetime.combine((now - timedelta(days=1)).date(), datetime.min.time())
    stmt = select(Appointment).where(
        Appointment.status == "completed",
        Appointment.scheduled_at >= yesterday,
        Appointment.scheduled_at < yesterday + timedelta(days=1),
    )
    for appointment in db.session.scalars(_without_reminder(stmt, "follow_up")).all():
        notification = service.send_follow_up(appointment)
        _record(appointment, "follow_up", notification, now, "Follow-up")
        counts["follow_up"] += 1

    db.session.commit()
    logger.info(
        "Reminders sent: %d for tomorrow, %d within 2h, %d follow-ups",
        counts["reminder_24h"],
        counts["reminder_2h"],
        counts["follow_up"],
    )
    return counts


def send_scheduled_notifications(
    service: NotificationService, now: Optional[datetime] = None
) -> Dict[str, int]:
    now = now or datetime.now()
    due = db.session.scalars(
        select(Notification)
        .where(
            Notification.status == "pending",
            Notification.scheduled_for.is_not(None),
            Notification.scheduled_for <= now,
        )
        .order_by(Notification.scheduled_for)
    ).all()

    sent = 0
    for notification in due:
        if service.send(notification):
            sent += 1
    db.session.commit()

    if due:
        logger.info("Scheduled notifications: %d due, %d sent", len(due), sent)
    return {"due": len(due), "sent": sent, "failed": len(due) - sent}
