"""
Create the schema and optionally load demo data.

    python init_db.py            # create missing tables
    python init_db.py --seed     # also add services, employees and products
"""

import argparse
from datetime import time
from decimal import Decimal

from sqlalchemy import select

from main import create_app
from nailsalon.extensions import db
from nailsalon.models import Employee, EmployeeSchedule, Product, Service

DEMO_SERVICES = [
    ("Esmaltado semipermanente", 60, "12000.00", True, "30"),
    ("Kapping gel", 90, "18000.00", True, "30"),
    ("Esculpidas", 120, "25000.00", True, "50"),
    ("Retirado", 30, "5000.00", False, "0"),
]

DEMO_PRODUCTS = [
    ("Base coat", "BASE-001", "Esmaltes", "OPI", "3500.00", 12, 4),
    ("Top coat", "TOP-001", "Esmaltes", "OPI", "3800.00", 10, 4),
    ("Gel constructor", "GEL-001", "Geles", "Kiara Sky", "9000.00", 5, 2),
    ("Limas 180/240", "LIM-001", "Descartables", None, "400.00", 50, 20),
]


def seed_demo_data():
    if db.session.scalar(select(Service.id).limit(1)) is not None:
        print("Database already has services, skipping seed")
        return

    services = [
        Service(
            name=name,
            duration_minutes=duration,
            price=Decimal(price),
            requires_deposit=deposit,
            deposit_percentage=Decimal(percentage),
            is_active=True,
        )
        for name, duration, price, deposit, percentage in DEMO_SERVICES
    ]
    db.session.add_all(services)

    for name, email in (("Campi", "campi@campinails.com"), ("Sofi", "sofi@campinails.com")):
        employee = Employee(name=name, email=email, is_active=True, specialties=[])
        employee.services = list(services)
        # Monday to Saturday, 9 to 18
        employee.schedules = [
            EmployeeSchedule(day_of_week=day, start_time=time(9), end_time=time(18))
            for day in range(1, 7)
        ]
        db.session.add(employee)

    for name, sku, category, brand, cost, stock, minimum in DEMO_PRODUCTS:
        db.session.add(
            Product(
                name=name,
                sku=sku,
                category=category,
                brand=brand,
                cost_price=Decimal(cost),
                stock_quantity=stock,
                min_stock_level=minimum,
            )
        )

    db.session.commit()
    print(f"Seeded {len(services)} services, 2 employees and {len(DEMO_PRODUCTS)} products")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", action="store_true", help="load demo data")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        db.create_all()
        print("Tables created successfully!")
        if args.seed:
            seed_demo_data()
