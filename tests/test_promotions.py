import json
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from nailsalon.models import Promotion
from nailsalon.services import promotions


def _window(days_before=1, days_after=30):
    now = datetime.now().replace(microsecond=0)
    return (
        (now - timedelta(days=days_before)).isoformat(),
        (now + timedelta(days=days_after)).isoformat(),
    )


@pytest.fixture
def make_promotion(db_session):
    def factory(**overrides):
        now = datetime.now()
        fields = {
            "name": "Primavera",
            "code": "PRIMA10",
            "type": "percentage",
            "value": Decimal("10"),
            "is_active": True,
            "used_count": 0,
            "starts_at": now - timedelta(days=1),
            "expires_at": now + timedelta(days=30),
            "applicable_days": [],
            "applicable_services": [],
        }
        fields.update(overrides)
        promotion = Promotion(**fields)
        db_session.add(promotion)
        db_session.commit()
        return promotion

    return factory


@pytest.mark.promotions
class TestPromotionRules:
    def test_percentage_discount_capped(self, make_promotion):
        promotion = make_promotion(value=Decimal("50"), max_discount=Decimal("2000"))
        assert promotions.calculate_discount(promotion, Decimal("10000")) == Decimal("2000.00")

    def test_fixed_discount_never_exceeds_amount(self, make_promotion):
        promotion = make_promotion(type="fixed", value=Decimal("5000"))
        assert promotions.calculate_discount(promotion, Decimal("3000")) == Decimal("3000.00")

    def test_minimum_amount(self, make_promotion):
        promotion = make_promotion(min_amount=Decimal("8000"))
        assert promotions.calculate_discount(promotion, Decimal("7999")) == Decimal("0.00")

    def test_usage_limit_exhausted(self, make_promotion):
        promotion = make_promotion(usage_limit=3, used_count=3)
        assert not promotions.is_valid(promotion)

    def test_expired(self, make_promotion):
        promotion = make_promotion(expires_at=datetime.now() - timedelta(minutes=1))
        assert not promotions.is_valid(promotion)

    def test_applicable_days_use_iso_weekdays(self, service, make_promotion):
        promotion = make_promotion(applicable_days=[7])
        sunday = datetime(2030, 3, 17).date()
        monday = datetime(2030, 3, 11).date()

        assert promotions.can_apply_to(promotion, service.id, sunday)
        assert not promotions.can_apply_to(promotion, service.id, monday)

    def test_applicable_services(self, make_service, make_promotion):
        gel = make_service(name="Kapping gel")
        polish = make_service(name="Esmaltado")
        promotion = make_promotion(applicable_services=[gel.id])
        day = datetime(2030, 3, 11).date()

        assert promotions.can_apply_to(promotion, gel.id, day)
        assert not promotions.can_apply_to(promotion, polish.id, day)


@pytest.mark.promotions
class TestPromotionApi:
    def test_create_promotion(self, client, auth_headers, service):
        starts_at, expires_at = _window()
        response = client.post(
            "/api/promotions",
            json={
                "name": "Otoño",
                "code": "OTONO15",
                "type": "percentage",
                "value": 15,
                "starts_at": starts_at,
                "expires_at": expires_at,
                "applicable_services": [service.id],
                "applicable_days": [1, 2],
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["code"] == "OTONO15"
        assert data["applicable_services"] == [service.id]
        assert data["is_valid"] is True

    def test_applicable_services_live_in_one_column(self, client, auth_headers, service):
        assert "promotion_service" not in Promotion.metadata.tables
        starts_at, expires_at = _window()
        payload = {
            "name": "Otoño",
            "code": "OTONO15",
            "type": "percentage",
            "value": 15,
            "starts_at": starts_at,
            "expires_at": expires_at,
            "applicable_services": [service.id, 999],
        }

        response = client.post("/api/promotions", json=payload, headers=auth_headers)
        assert response.status_code == 400

        payload["applicable_services"] = [service.id, service.id]
        response = client.post("/api/promotions", json=payload, headers=auth_headers)
        assert response.status_code == 201
        assert json.loads(response.data)["applicable_services"] == [service.id]

    def test_duplicate_code(self, client, auth_headers, make_promotion):
        make_promotion()
        starts_at, expires_at = _window()
        response = client.post(
            "/api/promotions",
            json={
                "name": "Copia",
                "code": "PRIMA10",
                "type": "fixed",
                "value": 500,
                "starts_at": starts_at,
                "expires_at": expires_at,
            },
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_percentage_over_100(self, client, auth_headers):
        starts_at, expires_at = _window()
        response = client.post(
            "/api/promotions",
            json={
                "name": "Error",
                "code": "MAS100",
                "type": "percentage",
                "value": 120,
                "starts_at": starts_at,
                "expires_at": expires_at,
            },
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_window_must_be_ordered(self, client, auth_headers):
        starts_at, expires_at = _window()
        response = client.post(
            "/api/promotions",
            json={
                "name": "Al revés",
                "code": "REVES",
                "type": "fixed",
                "value": 100,
                "starts_at": expires_at,
                "expires_at": starts_at,
            },
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_update_and_delete(self, client, auth_headers, make_promotion):
        promotion = make_promotion()

        response = client.put(
            f"/api/promotions/{promotion.id}", json={"is_active": False}, headers=auth_headers
        )
        assert json.loads(response.data)["is_valid"] is False

        response = client.delete(f"/api/promotions/{promotion.id}", headers=auth_headers)
        assert response.status_code == 200

    def test_active_is_public(self, client, make_promotion):
        active = make_promotion()
        make_promotion(code="VIEJA", expires_at=datetime.now() - timedelta(days=1))
        make_promotion(code="AGOTADA", usage_limit=1, used_count=1)

        response = client.get("/api/promotions/active")

        assert response.status_code == 200
        assert [p["id"] for p in json.loads(response.data)] == [active.id]

    def test_validate_code(self, client, service, make_promotion):
        make_promotion()
        response = client.post(
            "/api/promotions/validate",
            json={"code": "PRIMA10", "service_id": service.id, "date": "2030-03-11", "amount": 10000},
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["valid"] is True
        assert data["discount_amount"] == 1000.0
        assert data["final_amount"] == 9000.0

    def test_validate_unknown_code(self, client, service):
        response = client.post(
            "/api/promotions/validate",
            json={"code": "NOEXISTE", "service_id": service.id, "date": "2030-03-11", "amount": 1},
        )
        assert response.status_code == 422
        assert json.loads(response.data)["valid"] is False

    def test_validate_below_minimum(self, client, service, make_promotion):
        make_promotion(min_amount=Decimal("20000"))
        response = client.post(
            "/api/promotions/validate",
            json={"code": "PRIMA10", "service_id": service.id, "date": "2030-03-11", "amount": 10000},
        )
        assert response.status_code == 422
