"""
Thin checkout adapters for MercadoPago and Stripe plus the manual provider
used for cash and bank transfers.

Provider results are plain dicts with a ``success`` flag, mirroring what the
handlers return to the client.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

import httpx
from flask import current_app

from nailsalon.extensions import db
from nailsalon.models import Payment

logger = logging.getLogger(__name__)

MERCADOPAGO_PREFERENCES_URL = "https://api.mercadopago.com/checkout/preferences"
MERCADOPAGO_PAYMENT_URL = "https://api.mercadopago.com/v1/payments/{payment_id}"
STRIPE_SESSIONS_URL = "https://api.stripe.com/v1/checkout/sessions"

ONLINE_PROVIDERS = ("mercadopago", "stripe")


class PaymentService:
    def __init__(self, config):
        self.config = config
        self.currency = config.get("PAYMENT_CURRENCY") or "ARS"
        self.frontend_url = (config.get("FRONTEND_URL") or "").rstrip("/")
        self.app_url = (config.get("APP_URL") or "").rstrip("/")
        self.salon_name = config.get("SALON_NAME") or "Campi Nails"

    @classmethod
    def from_app(cls) -> "PaymentService":
        return cls(current_app.config)

    def create_checkout(self, payment: Payment) -> Dict:
        provider = payment.payment_provider
        if provider == "mercadopago":
            return self._mercadopago_checkout(payment)
        if provider == "stripe":
            return self._stripe_checkout(payment)
        return {"success": False, "error": f"Unsupported payment provider: {provider}"}

    def _mercadopago_checkout(self, payment: Payment) -> Dict:
        token = self.config.get("MERCADOPAGO_ACCESS_TOKEN")
        if not token:
            return {"success": False, "error": "MercadoPago is not configured"}

        appointment = payment.appointment
        client = appointment.client
        preference = {
            "items": [
                {
                    "title": appointment.service.name,
                    "quantity": 1,
                    "unit_price": float(payment.amount),
                    "currency_id": self.currency,
                }
            ],
            "payer": {
                "name": client.name,
                "email": client.email or "cliente@campinails.com",
                "phone": {"number": client.whatsapp},
            },
            "back_urls": {
                "success": f"{self.frontend_url}/payment/success",
                "failure": f"{self.frontend_url}/payment/failure",
                "pending": f"{self.frontend_url}/payment/pending",
            },
            "auto_return": "approved",
            "external_reference": str(payment.id),
            "notification_url": f"{self.app_url}/api/payments/webhook",
        }

        try:
            response = httpx.post(
                MERCADOPAGO_PREFERENCES_URL,
                headers={"Authorization": f"Bearer {token}"},
                json=preference,
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            logger.error("MercadoPago request failed: %s", e)
            return {"success": False, "error": "Could not reach MercadoPago"}

        if response.status_code not in (200, 201):
            logger.error("MercadoPago error %s: %s", response.status_code, response.text)
            return {"success": False, "error": "MercadoPago rejected the checkout"}

        data = response.json()
        return {
            "success": True,
            "provider_payment_id": data.get("id"),
            "payment_url": data.get("init_point"),
            "sandbox_url": data.get("sandbox_init_point"),
        }

    def _stripe_checkout(self, payment: Payment) -> Dict:
        secret = self.config.get("STRIPE_SECRET_KEY")
        if not secret:
            return {"success": False, "error": "Stripe is not configured"}

        appointment = payment.appointment
        # Stripe takes form-encoded nested keys and amounts in cents
        form = {
            "payment_method_types[0]": "card",
            "mode": "payment",
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": self.currency.lower(),
            "line_items[0][price_data][unit_amount]": str(int(Decimal(payment.amount) * 100)),
            "line_items[0][price_data][product_data][name]": appointment.service.name,
            "line_items[0][price_data][product_data][description]": f"Turno en {self.salon_name}",
            "success_url": f"{self.frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.frontend_url}/payment/cancel",
            "metadata[payment_id]": str(payment.id),
            "metadata[appointment_id]": str(appointment.id),
        }

        try:
            response = httpx.post(
                STRIPE_SESSIONS_URL,
                headers={"Authorization": f"Bearer {secret}"},
                data=form,
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            logger.error("Stripe request failed: %s", e)
            return {"success": False, "error": "Could not reach Stripe"}

        if response.status_code not in (200, 201):
            logger.error("Stripe error %s: %s", response.status_code, response.text)
            return {"success": False, "error": "Stripe rejected the checkout"}

        data = response.json()
        return {
            "success": True,
            "provider_payment_id": data.get("id"),
            "payment_url": data.get("url"),
        }

    def refund(self, payment: Payment, amount, reason: Optional[str]) -> Dict:
        # Providers accept refunds out of band; record the intent only
        logger.info(
            "Refund of %s on payment %s via %s (%s)",
            amount,
            payment.id,
            payment.payment_provider or "manual",
            reason,
        )
        return {"success": True}

    # -- webhooks -----------------------------------------------------------

    def handle_webhook(self, provider: str, data: dict) -> Dict:
        if provider == "mercadopago":
            return self._mercadopago_webhook(data)
        if provider == "stripe":
            return self._stripe_webhook(data)
        return {"success": False, "error": f"Unknown payment provider: {provider}"}

    def _mercadopago_webhook(self, data: dict) -> Dict:
        if data.get("type") != "payment":
            return {"success": True, "ignored": True}

        provider_id = (data.get("data") or {}).get("id")
        if not provider_id:
            return {"success": False, "error": "Missing payment id"}

        token = self.config.get("MERCADOPAGO_ACCESS_TOKEN")
        try:
            response = httpx.get(
                MERCADOPAGO_PAYMENT_URL.format(payment_id=provider_id),
                headers={"Authorization": f"Bearer {token}"},
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            logger.error("MercadoPago payment lookup failed: %s", e)
            return {"success": False, "error": "Could not reach MercadoPago"}

        if response.status_code != 200:
            logger.error(
                "MercadoPago payment lookup %s: %s", response.status_code, response.text
            )
            return {"success": False, "error": "Payment lookup failed"}

        info = response.json()
        if info.get("status") != "approved":
            return {"success": True, "ignored": True}

        payment = _payment_from_reference(info.get("external_reference"))
        if payment is None or payment.status == "completed":
            return {"success": True, "ignored": True}

        complete_payment(payment, provider_payment_id=str(provider_id))
        return {"success": True, "payment": payment}

    def _stripe_webhook(self, data: dict) -> Dict:
        if data.get("type") != "checkout.session.completed":
            return {"success": True, "ignored": True}

        session = (data.get("data") or {}).get("object") or {}
        payment = _payment_from_reference((session.get("metadata") or {}).get("payment_id"))
        if payment is None or payment.status == "completed":
            return {"success": True, "ignored": True}

        complete_payment(payment, provider_payment_id=session.get("id"))
        return {"success": True, "payment": payment}


def _payment_from_reference(reference) -> Optional[Payment]:
    try:
        return db.session.get(Payment, int(reference))
    except (TypeError, ValueError):
        return None


def complete_payment(payment: Payment, provider_payment_id: Optional[str] = None) -> None:
    """
    Mark the payment completed and confirm its appointment with the deposit paid.

    A cancelled appointment records the deposit but stays cancelled: its time
    may already belong to someone else.
    """
    now = datetime.now()
    payment.status = "completed"
    payment.paid_at = now
    if provider_payment_id:
        payment.provider_payment_id = provider_payment_id

    appointment = payment.appointment
    appointment.deposit_paid = True
    appointment.deposit_paid_at = now
    if appointment.status == "cancelled":
        logger.warning(
            "Payment %s completed for cancelled appointment %s, status left unchanged",
            payment.id,
            appointment.id,
        )
        return
    appointment.status = "confirmed"
    logger.info("Payment %s completed, appointment %s confirmed", payment.id, appointment.id)
