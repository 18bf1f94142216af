"""
Pytest configuration and shared fixtures for the nail salon API tests.

Every test gets a fresh in-memory SQLite database. The app context stays
pushed for the whole test, so fixtures and requests share one session.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest

from main import create_app
from nailsalon.extensions import db as database
from nailsalon.models import (
    AdminUser,
    Appointment,
    Base,
    Client,
    Employee,
    EmployeeSchedule,
    Service,
)
from nailsalon.utils.auth import hash_password

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SECRET_KEY": "test-secret-key-for-testing-only",
    "SCHEDULER_ENABLED": False,
    "DEFAULT_PAYMENT_PROVIDER": None,
    "MERCADOPAGO_ACCESS_TOKEN": None,
    "STRIPE_SECRET_KEY": None,
    "TWILIO_SID": None,
    "TWILIO_TOKEN": None,
    "TWILIO_WHATSAPP_NUMBER": None,
    "TWILIO_PHONE_NUMBER": None,
    "RESEND_API_KEY": None,
    "S3_BUCKET_NAME": None,
}

ADMIN_EMAIL = "admin@campinails.com"
ADMIN_PASSWORD = "password123"


def next_business_day(min_days=2):
    """First Monday-to-Saturday date at least ``min_days`` from today."""
    day = date.today() + timedelta(days=min_days)
    while day.isoweekday() == 7:
        day += timedelta(days=1)
    return day


def at(day, hour, minute=0):
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def app():
    """Create and configure a test app instance."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        Base.metadata.create_all(bind=database.engine)
        yield app
        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def db_session(app):
    return database.session


@pytest.fixture
def admin_user(db_session):
    admin = AdminUser(
        email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD), name="Campi"
    )
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture
def auth_headers(client, admin_user):
    """Authorization headers for the seeded admin."""
    response = client.post(
        "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def make_service(db_session):
    def factory(**overrides):
        fields = {
            "name": "Esmaltado semipermanente",
            "duration_minutes": 60,
            "price": Decimal("10000.00"),
            "is_active": True,
            "requires_deposit": False,
            "deposit_percentage": Decimal("0"),
        }
        fields.update(overrides)
        service = Service(**fields)
        db_session.add(service)
        db_session.commit()
        return service

    return factory


@pytest.fixture
def make_employee(db_session):
    counter = {"n": 0}

    def factory(services=(), days=range(1, 7), start=time(9), end=time(18), **overrides):
        counter["n"] += 1
        fields = {
            "name": f"Manicura {counter['n']}",
            "email": f"manicura{counter['n']}@campinails.com",
            "phone": f"+54911000000{counter['n']}",
            "is_active": True,
            "specialties": [],
        }
        fields.update(overrides)
        employee = Employee(**fields)
        employee.services = list(services)
        employee.schedules = [
            EmployeeSchedule(day_of_week=day, start_time=start, end_time=end, is_active=True)
            for day in days
        ]
        db_session.add(employee)
        db_session.commit()
        return employee

    return factory


@pytest.fixture
def make_client(db_session):
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        fields = {
            "name": f"Clienta {counter['n']}",
            "whatsapp": f"+5491155500{counter['n']:02d}",
            "email": f"clienta{counter['n']}@example.com",
            "is_active": True,
        }
        fields.update(overrides)
        client = Client(**fields)
        db_session.add(client)
        db_session.commit()
        return client

    return factory


@pytest.fixture
def make_appointment(db_session):
    """Insert an appointment directly, bypassing the booking rules."""

    def factory(service, client, start, employee=None, **overrides):
        fields = {
            "service_id": service.id,
            "client_id": client.id,
            "employee_id": employee.id if employee else None,
            "scheduled_at": start,
            "ends_at": start + timedelta(minutes=service.duration_minutes),
            "status": "confirmed",
            "total_price": service.price,
            "deposit_amount": Decimal("0"),
            "deposit_paid": False,
            "reschedule_count": 0,
        }
        fields.update(overrides)
        appointment = Appointment(**fields)
        db_session.add(appointment)
        db_session.commit()
        return appointment

    return factory


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def employee(make_employee, service):
    return make_employee(services=[service])


@pytest.fixture
def booking_day():
    return next_business_day()
