import json
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from conftest import at, next_business_day
from nailsalon.models import Appointment, Client, Notification, Payment, Promotion, TimeSlot


def booking(service, day, hour=10, minute=0, **extra):
    payload = {
        "service_id": service.id,
        "scheduled_at": f"{day.isoformat()} {hour:02d}:{minute:02d}",
        "name": "Lucía Gómez",
        "whatsapp": "+5491122334455",
        "email": "lucia@example.com",
    }
    payload.update(extra)
    return payload


def provider_response(status_code=201, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = json.dumps(body or {})
    return response


@pytest.mark.appointments
class TestBooking:
    def test_book_without_deposit(self, client, db_session, service, employee, booking_day):
        response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["requires_payment"] is False
        assert data["payment_url"] is None
        appointment = data["appointment"]
        assert appointment["status"] == "confirmed"
        assert appointment["employee_id"] == employee.id
        assert appointment["ends_at"] == at(booking_day, 11).isoformat()

        slot = db_session.query(TimeSlot).filter_by(appointment_id=appointment["id"]).one()
        assert slot.status == "reserved"
        assert db_session.query(Client).filter_by(whatsapp="+5491122334455").count() == 1

    def test_book_reuses_existing_client(self, client, db_session, service, employee, make_client, booking_day):
        existing = make_client(whatsapp="+5491122334455", email=None)

        response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 201
        assert json.loads(response.data)["appointment"]["client_id"] == existing.id
        assert db_session.query(Client).count() == 1
        assert existing.email == "lucia@example.com"

    def test_deposit_without_provider_leaves_pending_payment(
        self, client, db_session, make_service, make_employee, booking_day
    ):
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("30"))
        make_employee(services=[service])

        response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["requires_payment"] is True
        assert data["payment_url"] is None
        assert data["appointment"]["status"] == "pending_deposit"
        assert data["appointment"]["deposit_amount"] == 3000.0

        payment = db_session.get(Payment, data["payment_id"])
        assert payment.status == "pending"
        assert payment.amount == Decimal("3000.00")

    def test_deposit_with_mercadopago_checkout(
        self, app, client, db_session, make_service, make_employee, booking_day
    ):
        app.config["DEFAULT_PAYMENT_PROVIDER"] = "mercadopago"
        app.config["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-token"
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("50"))
        make_employee(services=[service])

        with patch(
            "nailsalon.services.payment_service.httpx.post",
            return_value=provider_response(
                201, {"id": "pref-123", "init_point": "https://mp.test/checkout/pref-123"}
            ),
        ) as mock_post:
            response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["payment_url"] == "https://mp.test/checkout/pref-123"
        sent = mock_post.call_args.kwargs["json"]
        assert sent["items"][0]["unit_price"] == 5000.0
        assert sent["external_reference"] == str(data["payment_id"])

        payment = db_session.get(Payment, data["payment_id"])
        assert payment.status == "processing"
        assert payment.provider_payment_id == "pref-123"

    def test_failed_checkout_rolls_back_booking(
        self, app, client, db_session, make_service, make_employee, booking_day
    ):
        app.config["DEFAULT_PAYMENT_PROVIDER"] = "mercadopago"
        app.config["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-token"
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("50"))
        make_employee(services=[service])

        with patch(
            "nailsalon.services.payment_service.httpx.post",
            return_value=provider_response(400, {"message": "invalid"}),
        ):
            response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 422
        assert db_session.query(Appointment).count() == 0
        assert db_session.query(Payment).count() == 0

    def test_promotion_discounts_total_and_deposit(
        self, client, db_session, make_service, make_employee, booking_day
    ):
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("50"))
        make_employee(services=[service])
        promotion = Promotion(
            name="Primavera",
            code="PRIMA10",
            type="percentage",
            value=Decimal("10"),
            is_active=True,
            used_count=0,
            starts_at=datetime.now() - timedelta(days=1),
            expires_at=datetime.now() + timedelta(days=30),
            applicable_days=[],
            applicable_services=[],
        )
        db_session.add(promotion)
        db_session.commit()

        response = client.post(
            "/api/appointments", json=booking(service, booking_day, promotion_code="PRIMA10")
        )

        assert response.status_code == 201
        appointment = json.loads(response.data)["appointment"]
        assert appointment["total_price"] == 9000.0
        assert appointment["deposit_amount"] == 4500.0
        assert appointment["promotions"][0]["code"] == "PRIMA10"
        assert promotion.used_count == 1

    def test_invalid_promotion_code(self, client, service, employee, booking_day):
        response = client.post(
            "/api/appointments", json=booking(service, booking_day, promotion_code="NOPE")
        )
        assert response.status_code == 422

    def test_lead_time_required(self, client, db_session, service, employee):
        soon = datetime.now() + timedelta(hours=2)
        payload = booking(service, soon.date(), soon.hour)

        response = client.post("/api/appointments", json=payload)

        assert response.status_code == 422
        assert "24 hours" in json.loads(response.data)["error"]
        assert db_session.query(Appointment).count() == 0

    def test_outside_business_hours(self, client, service, employee, booking_day):
        response = client.post("/api/appointments", json=booking(service, booking_day, 17, 30))
        assert response.status_code == 422

    def test_sunday_is_rejected(self, client, service, employee):
        day = next_business_day(3)
        while day.isoweekday() != 7:
            day += timedelta(days=1)

        response = client.post("/api/appointments", json=booking(service, day))

        assert response.status_code == 422
        assert "closed" in json.loads(response.data)["error"]

    def test_overlap_for_requested_employee(
        self, client, service, employee, make_client, make_appointment, booking_day
    ):
        make_appointment(service, make_client(), at(booking_day, 10), employee=employee)

        response = client.post(
            "/api/appointments",
            json=booking(service, booking_day, 10, employee_id=employee.id),
        )
        assert response.status_code == 422

    def test_second_employee_takes_overlapping_time(
        self, client, service, make_employee, make_client, make_appointment, booking_day
    ):
        busy = make_employee(services=[service])
        free = make_employee(services=[service])
        make_appointment(service, make_client(), at(booking_day, 10), employee=busy)

        response = client.post("/api/appointments", json=booking(service, booking_day))

        assert response.status_code == 201
        assert json.loads(response.data)["appointment"]["employee_id"] == free.id

    def test_employee_must_offer_service(self, client, make_service, make_employee, booking_day):
        service = make_service()
        other = make_employee(services=[make_service(name="Kapping")])

        response = client.post(
            "/api/appointments", json=booking(service, booking_day, employee_id=other.id)
        )
        assert response.status_code == 422

    def test_unknown_service(self, client, booking_day):
        response = client.post(
            "/api/appointments",
            json={"service_id": 999, "scheduled_at": f"{booking_day} 10:00", "name": "A", "whatsapp": "1"},
        )
        assert response.status_code == 404

    def test_missing_fields(self, client, service):
        response = client.post("/api/appointments", json={"service_id": service.id})

        assert response.status_code == 400
        assert "Missing required fields" in json.loads(response.data)["error"]

    def test_malformed_datetime(self, client, service):
        response = client.post(
            "/api/appointments",
            json={"service_id": service.id, "scheduled_at": "mañana", "name": "A", "whatsapp": "1"},
        )
        assert response.status_code == 400


@pytest.mark.appointments
class TestUpdateAppointment:
    def _book(self, client, service, day, hour=10):
        response = client.post("/api/appointments", json=booking(service, day, hour))
        assert response.status_code == 201
        return json.loads(response.data)["appointment"]

    def test_reschedule_rounds_down_and_moves_slot(
        self, client, db_session, auth_headers, service, employee, booking_day
    ):
        booked = self._book(client, service, booking_day)

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"scheduled_at": f"{booking_day} 14:20"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["scheduled_at"] == at(booking_day, 14).isoformat()
        assert data["status"] == "rescheduled"
        assert data["reschedule_count"] == 1

        reserved = db_session.query(TimeSlot).filter_by(appointment_id=booked["id"]).all()
        assert [s.start_time.hour for s in reserved] == [14]

    def test_third_reschedule_rejected(self, client, auth_headers, service, employee, booking_day):
        booked = self._book(client, service, booking_day)
        for hour in (12, 15):
            response = client.put(
                f"/api/appointments/{booked['id']}",
                json={"scheduled_at": f"{booking_day} {hour}:00"},
                headers=auth_headers,
            )
            assert response.status_code == 200

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"scheduled_at": f"{booking_day} 16:00"},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert "2 times" in json.loads(response.data)["error"]

    def test_reschedule_into_conflict(
        self, client, auth_headers, service, employee, make_client, make_appointment, booking_day
    ):
        booked = self._book(client, service, booking_day)
        make_appointment(service, make_client(), at(booking_day, 15), employee=employee)

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"scheduled_at": f"{booking_day} 15:00"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_reschedule_outside_hours(self, client, auth_headers, service, employee, booking_day):
        booked = self._book(client, service, booking_day)

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"scheduled_at": f"{booking_day} 17:45"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_cancel_releases_slot_and_notifies(
        self, client, db_session, auth_headers, service, employee, booking_day
    ):
        booked = self._book(client, service, booking_day)

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"status": "cancelled"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert json.loads(response.data)["status"] == "cancelled"
        assert db_session.query(TimeSlot).filter_by(appointment_id=booked["id"]).count() == 0
        notification = db_session.query(Notification).one()
        assert notification.recipient_type == "client"
        # No Twilio credentials in tests
        assert notification.status == "failed"

    def test_reactivating_cancelled_into_taken_time_rejected(
        self,
        client,
        db_session,
        auth_headers,
        service,
        employee,
        make_client,
        make_appointment,
        booking_day,
    ):
        booked = self._book(client, service, booking_day)
        client.put(
            f"/api/appointments/{booked['id']}",
            json={"status": "cancelled"},
            headers=auth_headers,
        )
        make_appointment(service, make_client(), at(booking_day, 10), employee=employee)

        for payload in ({"status": "confirmed"}, {"deposit_paid": True}):
            response = client.put(
                f"/api/appointments/{booked['id']}", json=payload, headers=auth_headers
            )
            assert response.status_code == 422

        appointment = db_session.get(Appointment, booked["id"])
        assert appointment.status == "cancelled"
        assert appointment.deposit_paid is False

    def test_reactivating_cancelled_reserves_slot_again(
        self, client, db_session, auth_headers, service, employee, booking_day
    ):
        booked = self._book(client, service, booking_day)
        client.put(
            f"/api/appointments/{booked['id']}",
            json={"status": "cancelled"},
            headers=auth_headers,
        )

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"status": "confirmed"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert json.loads(response.data)["status"] == "confirmed"
        reserved = db_session.query(TimeSlot).filter_by(appointment_id=booked["id"]).all()
        assert [(s.start_time.hour, s.status) for s in reserved] == [(10, "reserved")]

    def test_deposit_paid_confirms(
        self, client, auth_headers, make_service, make_employee, booking_day
    ):
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("30"))
        make_employee(services=[service])
        booked = self._book(client, service, booking_day)
        assert booked["status"] == "pending_deposit"

        response = client.put(
            f"/api/appointments/{booked['id']}",
            json={"deposit_paid": True},
            headers=auth_headers,
        )

        data = json.loads(response.data)
        assert data["status"] == "confirmed"
        assert data["deposit_paid"] is True
        assert data["deposit_paid_at"] is not None

    def test_invalid_status(self, client, auth_headers, service, employee, booking_day):
        booked = self._book(client, service, booking_day)
        response = client.put(
            f"/api/appointments/{booked['id']}", json={"status": "done"}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_delete_releases_slot(self, client, db_session, auth_headers, service, employee, booking_day):
        booked = self._book(client, service, booking_day)

        response = client.delete(f"/api/appointments/{booked['id']}", headers=auth_headers)

        assert response.status_code == 200
        assert db_session.get(Appointment, booked["id"]) is None
        assert db_session.query(TimeSlot).filter_by(status="reserved").count() == 0

    def test_list_filters_by_day(
        self, client, auth_headers, service, employee, make_client, make_appointment, booking_day
    ):
        make_appointment(service, make_client(), at(booking_day, 10), employee=employee)
        make_appointment(
            service, make_client(), at(booking_day + timedelta(days=1), 10), employee=employee
        )

        response = client.get(
            f"/api/appointments?date={booking_day.isoformat()}", headers=auth_headers
        )

        assert response.status_code == 200
        assert len(json.loads(response.data)) == 1

    def test_get_unknown(self, client, auth_headers):
        response = client.get("/api/appointments/404", headers=auth_headers)
        assert response.status_code == 404


@pytest.mark.appointments
class TestDepositPayment:
    def _pending(self, client, make_service, make_employee, day):
        service = make_service(requires_deposit=True, deposit_percentage=Decimal("30"))
        make_employee(services=[service])
        response = client.post("/api/appointments", json=booking(service, day))
        return json.loads(response.data)

    def test_transfer_marks_processing(
        self, client, db_session, make_service, make_employee, booking_day
    ):
        booked = self._pending(client, make_service, make_employee, booking_day)

        response = client.post(
            f"/api/appointments/{booked['appointment']['id']}/payment",
            json={"payment_method": "transfer"},
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        # The pending payment created at booking is reused
        assert data["payment_id"] == booked["payment_id"]
        payment = db_session.get(Payment, data["payment_id"])
        assert payment.status == "processing"
        assert payment.payment_provider == "manual"
        assert "transfer" in data["appointment"]["admin_notes"].lower()

    def test_stripe_checkout(self, app, client, make_service, make_employee, booking_day):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
        booked = self._pending(client, make_service, make_employee, booking_day)

        with patch(
            "nailsalon.services.payment_service.httpx.post",
            return_value=provider_response(200, {"id": "cs_1", "url": "https://stripe.test/cs_1"}),
        ) as mock_post:
            response = client.post(
                f"/api/appointments/{booked['appointment']['id']}/payment",
                json={"payment_method": "stripe"},
            )

        assert response.status_code == 201
        assert json.loads(response.data)["payment_url"] == "https://stripe.test/cs_1"
        form = mock_post.call_args.kwargs["data"]
        assert form["line_items[0][price_data][unit_amount]"] == "300000"

    def test_unknown_method(self, client, make_service, make_employee, booking_day):
        booked = self._pending(client, make_service, make_employee, booking_day)
        response = client.post(
            f"/api/appointments/{booked['appointment']['id']}/payment",
            json={"payment_method": "bitcoin"},
        )
        assert response.status_code == 400

    def test_no_deposit_required(self, client, service, employee, booking_day):
        booked = json.loads(
            client.post("/api/appointments", json=booking(service, booking_day)).data
        )
        response = client.post(
            f"/api/appointments/{booked['appointment']['id']}/payment",
            json={"payment_method": "cash"},
        )
        assert response.status_code == 422
