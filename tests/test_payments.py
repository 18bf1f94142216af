import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from conftest import at, next_business_day
from nailsalon.models import Appointment, Payment


def _response(status_code, body):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


@pytest.fixture
def pending_appointment(service, make_client, make_appointment):
    return make_appointment(
        service,
        make_client(),
        at(next_business_day(), 10),
        status="pending",
        deposit_amount=Decimal("3000.00"),
    )


@pytest.fixture
def make_payment(db_session):
    def factory(appointment, **overrides):
        fields = {
            "appointment_id": appointment.id,
            "amount": Decimal("3000.00"),
            "currency": "ARS",
            "payment_method": "transfer",
            "payment_provider": "manual",
            "status": "pending",
            "payment_metadata": {},
        }
        fields.update(overrides)
        payment = Payment(**fields)
        db_session.add(payment)
        db_session.commit()
        return payment

    return factory


@pytest.mark.payments
class TestPaymentAdmin:
    def test_list_is_paginated(self, client, auth_headers, pending_appointment, make_payment):
        for _ in range(3):
            make_payment(pending_appointment)

        response = client.get("/api/payments", headers=auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["total"] == 3
        assert data["current_page"] == 1
        assert data["last_page"] == 1
        assert len(data["data"]) == 3

    def test_list_filters_by_status(self, client, auth_headers, pending_appointment, make_payment):
        make_payment(pending_appointment)
        make_payment(pending_appointment, status="failed")

        response = client.get("/api/payments?status=failed", headers=auth_headers)
        assert [p["status"] for p in json.loads(response.data)["data"]] == ["failed"]

    def test_cash_payment_completes_immediately(
        self, client, db_session, auth_headers, pending_appointment
    ):
        response = client.post(
            "/api/payments",
            json={
                "appointment_id": pending_appointment.id,
                "amount": 3000,
                "payment_method": "cash",
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["status"] == "completed"
        assert data["payment_provider"] == "manual"
        assert data["payment_url"] is None

        appointment = db_session.get(Appointment, pending_appointment.id)
        assert appointment.status == "confirmed"
        assert appointment.deposit_paid is True

    def test_online_checkout_failure(self, client, auth_headers, pending_appointment):
        # No MercadoPago token configured
        response = client.post(
            "/api/payments",
            json={
                "appointment_id": pending_appointment.id,
                "amount": 3000,
                "payment_method": "mercadopago",
            },
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert json.loads(response.data)["payment"]["status"] == "failed"

    def test_online_checkout_success(self, app, client, auth_headers, pending_appointment):
        app.config["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-token"
        preference = {"id": "pref-123", "init_point": "https://mp.example/checkout/pref-123"}

        with patch(
            "nailsalon.services.payment_service.httpx.post",
            return_value=_response(201, preference),
        ):
            response = client.post(
                "/api/payments",
                json={
                    "appointment_id": pending_appointment.id,
                    "amount": 3000,
                    "payment_method": "mercadopago",
                },
                headers=auth_headers,
            )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["status"] == "processing"
        assert data["provider_payment_id"] == "pref-123"
        assert data["payment_url"] == preference["init_point"]

    def test_unknown_method(self, client, auth_headers, pending_appointment):
        response = client.post(
            "/api/payments",
            json={
                "appointment_id": pending_appointment.id,
                "amount": 3000,
                "payment_method": "bitcoin",
            },
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_confirm_payment(
        self, client, db_session, auth_headers, pending_appointment, make_payment
    ):
        payment = make_payment(pending_appointment, status="processing")

        response = client.post(f"/api/payments/{payment.id}/confirm", headers=auth_headers)

        assert response.status_code == 200
        assert json.loads(response.data)["status"] == "completed"
        assert db_session.get(Appointment, pending_appointment.id).status == "confirmed"

    def test_confirm_keeps_cancelled_appointment_cancelled(
        self, client, db_session, auth_headers, pending_appointment, make_payment
    ):
        payment = make_payment(pending_appointment, status="processing")
        pending_appointment.status = "cancelled"
        db_session.commit()

        response = client.post(f"/api/payments/{payment.id}/confirm", headers=auth_headers)

        assert response.status_code == 200
        assert json.loads(response.data)["status"] == "completed"
        appointment = db_session.get(Appointment, pending_appointment.id)
        assert appointment.status == "cancelled"
        assert appointment.deposit_paid is True

    def test_confirm_rejects_failed_payment(
        self, client, auth_headers, pending_appointment, make_payment
    ):
        payment = make_payment(pending_appointment, status="failed")
        response = client.post(f"/api/payments/{payment.id}/confirm", headers=auth_headers)
        assert response.status_code == 422

    def test_partial_refund(self, client, auth_headers, pending_appointment, make_payment):
        payment = make_payment(pending_appointment, status="completed")

        response = client.post(
            f"/api/payments/{payment.id}/refund",
            json={"amount": 1000, "reason": "Turno cancelado"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "refunded"
        assert data["refund_amount"] == 1000.0
        assert data["metadata"]["refund_reason"] == "Turno cancelado"

    def test_refund_rules(self, client, auth_headers, pending_appointment, make_payment):
        pending = make_payment(pending_appointment)
        completed = make_payment(pending_appointment, status="completed")

        response = client.post(f"/api/payments/{pending.id}/refund", headers=auth_headers)
        assert response.status_code == 422

        response = client.post(
            f"/api/payments/{completed.id}/refund", json={"amount": 5000}, headers=auth_headers
        )
        assert response.status_code == 422

    def test_get_payment_includes_appointment(
        self, client, auth_headers, pending_appointment, make_payment
    ):
        payment = make_payment(pending_appointment)
        response = client.get(f"/api/payments/{payment.id}", headers=auth_headers)
        assert json.loads(response.data)["appointment"]["id"] == pending_appointment.id


@pytest.mark.payments
class TestWebhooks:
    def test_requires_provider_header(self, client):
        response = client.post("/api/payments/webhook", json={"type": "payment"})
        assert response.status_code == 400

    def test_mercadopago_approved(
        self, app, client, db_session, pending_appointment, make_payment
    ):
        app.config["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-token"
        payment = make_payment(
            pending_appointment, payment_method="mercadopago", payment_provider="mercadopago"
        )
        lookup = {"status": "approved", "external_reference": str(payment.id)}

        with patch(
            "nailsalon.services.payment_service.httpx.get",
            return_value=_response(200, lookup),
        ) as mock_get:
            response = client.post(
                "/api/payments/webhook",
                json={"type": "payment", "data": {"id": "98765"}},
                headers={"X-Payment-Provider": "mercadopago"},
            )

        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ok"}
        assert mock_get.call_args[0][0].endswith("/v1/payments/98765")

        payment = db_session.get(Payment, payment.id)
        assert payment.status == "completed"
        assert payment.provider_payment_id == "98765"
        assert payment.appointment.status == "confirmed"

    def test_mercadopago_pending_is_ignored(
        self, app, client, db_session, pending_appointment, make_payment
    ):
        payment = make_payment(pending_appointment, payment_provider="mercadopago")
        lookup = {"status": "in_process", "external_reference": str(payment.id)}

        with patch(
            "nailsalon.services.payment_service.httpx.get",
            return_value=_response(200, lookup),
        ):
            response = client.post(
                "/api/payments/webhook",
                json={"type": "payment", "data": {"id": "1"}},
                headers={"X-Payment-Provider": "mercadopago"},
            )

        assert response.status_code == 200
        assert db_session.get(Payment, payment.id).status == "pending"

    def test_stripe_session_completed(
        self, client, db_session, pending_appointment, make_payment
    ):
        payment = make_payment(
            pending_appointment, payment_method="stripe", payment_provider="stripe"
        )

        response = client.post(
            "/api/payments/webhook",
            json={
                "type": "checkout.session.completed",
                "data": {
                    "object": {"id": "cs_test_1", "metadata": {"payment_id": str(payment.id)}}
                },
            },
            headers={"X-Payment-Provider": "stripe"},
        )

        assert response.status_code == 200
        payment = db_session.get(Payment, payment.id)
        assert payment.status == "completed"
        assert payment.provider_payment_id == "cs_test_1"
        assert payment.appointment.deposit_paid is True

    def test_late_stripe_payment_does_not_revive_cancelled_appointment(
        self, client, db_session, pending_appointment, make_payment
    ):
        payment = make_payment(
            pending_appointment, payment_method="stripe", payment_provider="stripe"
        )
        pending_appointment.status = "cancelled"
        db_session.commit()

        response = client.post(
            "/api/payments/webhook",
            json={
                "type": "checkout.session.completed",
                "data": {
                    "object": {"id": "cs_test_2", "metadata": {"payment_id": str(payment.id)}}
                },
            },
            headers={"X-Payment-Provider": "stripe"},
        )

        assert response.status_code == 200
        payment = db_session.get(Payment, payment.id)
        assert payment.status == "completed"
        assert payment.appointment.status == "cancelled"

    def test_other_stripe_events_ignored(self, client):
        response = client.post(
            "/api/payments/webhook",
            json={"type": "payment_intent.created"},
            headers={"X-Payment-Provider": "stripe"},
        )
        assert response.status_code == 200
