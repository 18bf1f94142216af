# Email channel for client and staff notifications
import html
import logging
from typing import Dict, Optional

import resend

logger = logging.getLogger(__name__)


class EmailService:
    """
    Email delivery through Resend.

    Without an API key the service is disabled: every send returns a failed
    result instead of raising, so callers can mark the notification failed.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: str = "onboarding@resend.dev",
        salon_name: str = "Campi Nails",
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.salon_name = salon_name
        self.disabled = not api_key
        if self.disabled:
            logger.warning("RESEND_API_KEY not set, EmailService is disabled")
        else:
            resend.api_key = api_key

    @classmethod
    def from_config(cls, config) -> "EmailService":
        return cls(
            api_key=config.get("RESEND_API_KEY"),
            from_email=config.get("RESEND_FROM_EMAIL") or "onboarding@resend.dev",
            salon_name=config.get("SALON_NAME") or "Campi Nails",
        )

    def render(self, title: str, message: str) -> str:
        paragraphs = "".join(
            f'<p style="color: #4a5568; font-size: 16px; line-height: 1.7;">{html.escape(line)}</p>'
            for line in message.splitlines()
            if line.strip()
        )
        return f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="margin: 0; padding: 0; font-family: 'Segoe UI', Arial, sans-serif; background-color: #fdf2f8;">
            <table width="100%" cellpadding="0" cellspacing="0" style="padding: 30px 20px;">
                <tr>
                    <td align="center">
                        <table width="600" cellpadding="0" cellspacing="0" style="background-color: #ffffff; border-radius: 16px;">
                            <tr>
                                <td style="background-color: #db2777; padding: 32px 40px; text-align: center;">
                                    <h1 style="color: #ffffff; margin: 0; font-size: 28px; letter-spacing: 2px;">{html.escape(self.salon_name)}</h1>
                                    <h2 style="color: #ffffff; margin: 12px 0 0 0; font-size: 20px;">{html.escape(title)}</h2>
                                </td>
                            </tr>
                            <tr>
                                <td style="padding: 32px 40px;">{paragraphs}</td>
                            </tr>
                        </table>
                    </td>
                </tr>
            </table>
        </body>
        </html>
        """

    def send_email(self, to_email: str, subject: str, message: str) -> Dict:
        """
        Send a single notification email

        Args:
            to_email: Recipient email address
            subject: Subject line, also used as the heading
            message: Plain text body; each line becomes a paragraph

        Returns:
            Dict with 'success' boolean and 'email_id' or 'error'
        """
        if self.disabled:
            return {"success": False, "error": "Email service not configured"}

        try:
            params = {
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": self.render(subject, message),
                "text": message,
            }
            email_response = resend.Emails.send(params)
            return {
                "success": True,
                "message": "Email sent successfully",
                "email_id": email_response.get("id"),
            }
        except Exception as e:
            logger.error("Resend error sending to %s: %s", to_email, e)
            return {"success": False, "error": str(e)}
