import json

import pytest

from nailsalon.models import EmployeeSchedule, TimeSlot


@pytest.mark.employees
class TestEmployeeCrud:
    def test_create_with_services(self, client, auth_headers, service):
        response = client.post(
            "/api/employees",
            json={
                "name": "Sofi",
                "email": "sofi@campinails.com",
                "phone": "+5491100000000",
                "service_ids": [service.id],
                "specialties": ["nail art"],
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["services"] == [{"id": service.id, "name": service.name}]
        assert data["specialties"] == ["nail art"]

    def test_duplicate_email(self, client, auth_headers, employee):
        response = client.post(
            "/api/employees",
            json={"name": "Otra", "email": employee.email},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_invalid_email(self, client, auth_headers):
        response = client.post(
            "/api/employees", json={"name": "Otra", "email": "no-arroba"}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_unknown_service_ids(self, client, auth_headers):
        response = client.post(
            "/api/employees",
            json={"name": "Otra", "email": "otra@campinails.com", "service_ids": [999]},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_list_filters_by_service(self, client, auth_headers, make_service, make_employee):
        gel = make_service(name="Kapping gel")
        polish = make_service(name="Esmaltado")
        make_employee(services=[gel])
        polisher = make_employee(services=[polish])

        response = client.get(f"/api/employees?service_id={polish.id}", headers=auth_headers)

        assert [e["id"] for e in json.loads(response.data)] == [polisher.id]

    def test_public_list_hides_inactive(self, client, service, make_employee):
        make_employee(services=[service], is_active=False)
        active = make_employee(services=[service])

        response = client.get("/api/employees/public")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert [e["id"] for e in data] == [active.id]
        assert "email" not in data[0]

    def test_update_and_delete(self, client, db_session, auth_headers, employee):
        response = client.put(
            f"/api/employees/{employee.id}",
            json={"name": "Campi", "service_ids": []},
            headers=auth_headers,
        )
        assert json.loads(response.data)["name"] == "Campi"
        assert json.loads(response.data)["services"] == []

        response = client.delete(f"/api/employees/{employee.id}", headers=auth_headers)
        assert response.status_code == 200
        assert db_session.query(EmployeeSchedule).count() == 0


@pytest.mark.employees
class TestEmployeeSchedules:
    def test_replace_weekly_schedules(self, client, db_session, auth_headers, employee):
        response = client.put(
            f"/api/employees/{employee.id}/schedules",
            json={
                "schedules": [
                    {"day_of_week": 2, "start_time": "10:00", "end_time": "14:00"},
                    {"day_of_week": 2, "start_time": "15:00", "end_time": "19:00"},
                    {"day_of_week": 6, "start_time": "09:00", "end_time": "13:00"},
                ]
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert [(s["day_of_week"], s["start_time"]) for s in data] == [
            (2, "10:00"),
            (2, "15:00"),
            (6, "09:00"),
        ]
        assert db_session.query(EmployeeSchedule).count() == 3

    def test_schedule_rejects_sunday_zero(self, client, auth_headers, employee):
        response = client.put(
            f"/api/employees/{employee.id}/schedules",
            json={"schedules": [{"day_of_week": 0, "start_time": "10:00", "end_time": "14:00"}]},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_schedule_rejects_duplicates(self, client, auth_headers, employee):
        row = {"day_of_week": 1, "start_time": "10:00", "end_time": "14:00"}
        response = client.put(
            f"/api/employees/{employee.id}/schedules",
            json={"schedules": [row, dict(row)]},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_get_weekly_schedules(self, client, auth_headers, employee):
        response = client.get(f"/api/employees/{employee.id}/schedules", headers=auth_headers)

        assert response.status_code == 200
        assert [s["day_of_week"] for s in json.loads(response.data)] == [1, 2, 3, 4, 5, 6]

    def test_employee_slots(self, client, db_session, auth_headers, service, employee):
        response = client.post(
            f"/api/employees/{employee.id}/slots",
            json={
                "service_id": service.id,
                "start_date": "2030-03-11",
                "end_date": "2030-03-11",
                "start_time": "09:00",
                "end_time": "11:00",
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert json.loads(response.data)["created_slots"] == 2
        assert {s.employee_id for s in db_session.query(TimeSlot).all()} == {employee.id}

        response = client.get(
            f"/api/employees/{employee.id}/schedule?start_date=2030-03-11&end_date=2030-03-12",
            headers=auth_headers,
        )
        assert len(json.loads(response.data)["slots"]) == 2

    def test_slots_for_service_not_offered(self, client, auth_headers, make_service, employee):
        other = make_service(name="Esculpidas")
        response = client.post(
            f"/api/employees/{employee.id}/slots",
            json={
                "service_id": other.id,
                "start_date": "2030-03-11",
                "end_date": "2030-03-11",
                "start_time": "09:00",
                "end_time": "11:00",
            },
            headers=auth_headers,
        )
        assert response.status_code == 422
