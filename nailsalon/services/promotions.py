from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

from nailsalon.extensions import db
from nailsalon.models import Promotion
from nailsalon.services.scheduling import round_half_up


def find_by_code(code: str) -> Optional[Promotion]:
    return db.session.scalar(select(Promotion).where(Promotion.code == code))


def is_valid(promotion: Promotion, now: Optional[datetime] = None) -> bool:
    """Active, inside its window and still under the usage limit."""
    now = now or datetime.now()
    if not promotion.is_active:
        return False
    if promotion.starts_at > now or promotion.expires_at < now:
        return False
    if promotion.usage_limit is not None and promotion.used_count >= promotion.usage_limit:
        return False
    return True


def can_apply_to(
    promotion: Promotion, service_id: int, day: date, now: Optional[datetime] = None
) -> bool:
    if not is_valid(promotion, now):
        return False
    if promotion.applicable_services and service_id not in promotion.applicable_services:
        return False
    if promotion.applicable_days and day.isoweekday() not in promotion.applicable_days:
        return False
    return True


def calculate_discount(promotion: Promotion, amount) -> Decimal:
    amount = Decimal(amount)
    if promotion.min_amount is not None and amount < Decimal(promotion.min_amount):
        return Decimal("0.00")

    if promotion.type == "percentage":
        discount = amount * Decimal(promotion.value) / Decimal(100)
    else:
        discount = Decimal(promotion.value)

    if promotion.max_discount is not None and discount > Decimal(promotion.max_discount):
        discount = Decimal(promotion.max_discount)

    return round_half_up(min(discount, amount))
