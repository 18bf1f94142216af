import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(Exception):
    """Malformed request input; handlers answer 400."""


def parse_date(value, field="date") -> date:
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")


def parse_time(value, field="time") -> time:
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(value), fmt).time()
        except (TypeError, ValueError):
            continue
    raise ValidationError(f"{field} must be a time in HH:MM format")


def parse_datetime(value, field="scheduled_at") -> datetime:
    """Accepts ``YYYY-MM-DD HH:MM`` or any ISO 8601 datetime; returns a naive value."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} must be a datetime string")
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d %H:%M")
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(
                f"{field} must be in 'YYYY-MM-DD HH:MM' or ISO 8601 format"
            )
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_decimal(value, field, minimum=None, maximum=None) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return number


def parse_int(value, field, minimum=None, maximum=None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return number


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_weekdays(value, field="days_of_week") -> list:
    if not isinstance(value, list) or not value or len(value) > 7:
        raise ValidationError(f"{field} must be a list of 1 to 7 ISO weekdays")
    return sorted({parse_int(d, field, 1, 7) for d in value})


def validate_email(value, field="email") -> str:
    if not isinstance(value, str) or not EMAIL_RE.match(value):
        raise ValidationError(f"{field} must be a valid email address")
    return value


def require_fields(data: dict, fields) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f'Missing required fields: {", ".join(missing)}')
