import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from nailsalon.extensions import db
from nailsalon.services.notification_service import NotificationService
from nailsalon.services.reminders import (
    send_appointment_reminders,
    send_scheduled_notifications,
)

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""
    minutes = app.config.get("SCHEDULER_INTERVAL_MINUTES", 5)

    @scheduler.scheduled_job("interval", minutes=minutes, id="appointment_reminders")
    def reminders_job():
        """Send 24h/2h reminders and follow-ups."""
        with app.app_context():
            try:
                counts = send_appointment_reminders(NotificationService.from_app())
                if any(counts.values()):
                    logger.info("Reminders sent: %s", counts)
            except Exception as e:
                logger.error("Error sending appointment reminders: %s", e)
                db.session.rollback()

    @scheduler.scheduled_job("interval", minutes=minutes, id="scheduled_notifications")
    def notifications_job():
        """Send notifications whose scheduled time has arrived."""
        with app.app_context():
            try:
                send_scheduled_notifications(NotificationService.from_app())
            except Exception as e:
                logger.error("Error sending scheduled notifications: %s", e)
                db.session.rollback()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started, running every %s minutes", minutes)
        # Shut down the scheduler when exiting the app
        atexit.register(lambda: scheduler.shutdown())
    else:
        logger.info("Scheduler already running (skipping duplicate start)")
