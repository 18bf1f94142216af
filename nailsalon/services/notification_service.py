"""
Notification delivery for clients, employees and admins.

WhatsApp and SMS go through the Twilio Messages REST API, email through
Resend (see ``EmailService``) and push is accepted without a transport.
Sending never raises: a notification that cannot be delivered is marked
``failed`` and the reason is logged.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from flask import current_app

from nailsalon.extensions import db
from nailsalon.models import AdminUser, Client, Employee, Notification
from nailsalon.services.email_service import EmailService

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class NotificationService:
    def __init__(self, config, email_service: Optional[EmailService] = None):
        self.config = config
        self.salon_name = config.get("SALON_NAME") or "Campi Nails"
        self.email_service = email_service or EmailService.from_config(config)

    @classmethod
    def from_app(cls) -> "NotificationService":
        return cls(current_app.config)

    # -- delivery -----------------------------------------------------------

    def send(self, notification: Notification) -> bool:
        try:
            recipient = self._get_recipient(notification)
            if recipient is None:
                logger.warning(
                    "Notification %s: unknown %s %s",
                    notification.id,
                    notification.recipient_type,
                    notification.recipient_id,
                )
                success = False
            elif notification.type == "whatsapp":
                success = self._send_whatsapp(notification, recipient)
            elif notification.type == "sms":
                success = self._send_sms(notification, recipient)
            elif notification.type == "email":
                success = self._send_email(notification, recipient)
            elif notification.type == "push":
                success = True
            else:
                success = False
        except Exception as e:
            logger.error(
                "Error sending notification %s (%s): %s",
                notification.id,
                notification.type,
                e,
            )
            success = False

        if success:
            notification.status = "sent"
            notification.sent_at = datetime.now()
        else:
            notification.status = "failed"
        db.session.flush()
        return success

    def create_and_send(self, **fields) -> Notification:
        notification = Notification(status="pending", **fields)
        db.session.add(notification)
        db.session.flush()
        self.send(notification)
        return notification

    def _get_recipient(self, notification: Notification):
        model = {"client": Client, "employee": Employee, "admin": AdminUser}.get(
            notification.recipient_type
        )
        if model is None:
            return None
        return db.session.get(model, notification.recipient_id)

    @staticmethod
    def _phone_for(recipient) -> Optional[str]:
        if isinstance(recipient, Client):
            return recipient.whatsapp
        if isinstance(recipient, Employee):
            return recipient.phone
        return None

    def _post_twilio(self, from_number: str, to_number: str, body: str) -> bool:
        sid = self.config.get("TWILIO_SID")
        token = self.config.get("TWILIO_TOKEN")
        try:
            response = httpx.post(
                TWILIO_MESSAGES_URL.format(sid=sid),
                auth=(sid, token),
                data={"From": from_number, "To": to_number, "Body": body},
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            logger.error("Twilio request failed: %s", e)
            return False

        if response.status_code in (200, 201):
            return True
        logger.error("Twilio error %s: %s", response.status_code, response.text)
        return False

    def _send_whatsapp(self, notification: Notification, recipient) -> bool:
        number = self._phone_for(recipient)
        if not number:
            return False
        sender = self.config.get("TWILIO_WHATSAPP_NUMBER")
        if not (self.config.get("TWILIO_SID") and self.config.get("TWILIO_TOKEN") and sender):
            logger.warning("Twilio WhatsApp credentials not configured")
            return False
        return self._post_twilio(f"whatsapp:{sender}", f"whatsapp:{number}", notification.message)

    def _send_sms(self, notification: Notification, recipient) -> bool:
        number = self._phone_for(recipient)
        if not number:
            return False
        sender = self.config.get("TWILIO_PHONE_NUMBER")
        if not (self.config.get("TWILIO_SID") and self.config.get("TWILIO_TOKEN") and sender):
            logger.warning("Twilio SMS credentials not configured")
            return False
        return self._post_twilio(sender, number, notification.message)

    def _send_email(self, notification: Notification, recipient) -> bool:
        email = getattr(recipient, "email", None)
        if not email:
            return False
        result = self.email_service.send_email(email, notification.title, notification.message)
        return result.get("success", False)

    # -- templates ----------------------------------------------------------

    def _client_whatsapp(self, appointment, title: str, message: str, **data) -> Notification:
        return self.create_and_send(
            type="whatsapp",
            recipient_type="client",
            recipient_id=appointment.client_id,
            title=f"{title} - {self.salon_name}",
            message=message,
            data={"appointment_id": appointment.id, **data},
        )

    def send_appointment_confirmation(self, appointment) -> Notification:
        message = (
            f"¡Hola {appointment.client.name}! Tu turno para {appointment.service.name} "
            f"quedó confirmado para el {appointment.scheduled_at:%d/%m/%Y %H:%M}. ¡Te esperamos!"
        )
        return self._client_whatsapp(appointment, "Turno confirmado", message)

    def send_appointment_cancellation(self, appointment) -> Notification:
        message = (
            f"Hola {appointment.client.name}, tu turno para {appointment.service.name} "
            f"del {appointment.scheduled_at:%d/%m/%Y %H:%M} fue cancelado. "
            "Escribinos para reprogramarlo cuando quieras."
        )
        return self._client_whatsapp(appointment, "Turno cancelado", message)

    def send_appointment_reminder(self, appointment, reminder_type="reminder_24h") -> Notification:
        when = "mañana" if reminder_type == "reminder_24h" else "en 2 horas"
        message = (
            f"¡Hola {appointment.client.name}! Te recordamos que tenés tu turno {when} "
            f"a las {appointment.scheduled_at:%H:%M} para {appointment.service.name}."
        )
        return self._client_whatsapp(
            appointment, "Recordatorio de turno", message, reminder_type=reminder_type
        )

    def send_follow_up(self, appointment) -> Notification:
        message = (
            f"¡Hola {appointment.client.name}! Esperamos que hayas disfrutado tu visita "
            f"a {self.salon_name}. ¡Nos encantaría verte pronto!"
        )
        return self._client_whatsapp(appointment, "Gracias por visitarnos", message)

    def send_payment_confirmation(self, payment) -> Notification:
        appointment = payment.appointment
        message = (
            f"¡Perfecto! Recibimos tu pago de ${float(payment.amount):.2f} para tu turno "
            f"del {appointment.scheduled_at:%d/%m/%Y %H:%M}. Tu reserva está confirmada."
        )
        return self._client_whatsapp(
            appointment, "Pago confirmado", message, payment_id=payment.id
        )


def notify_safely(action, *args) -> Optional[Notification]:
    """Run a template send; log and swallow errors so the caller's request succeeds."""
    try:
        return action(*args)
    except Exception as e:
        logger.warning("Notification %s failed: %s", getattr(action, "__name__", action), e)
        return None
