"""
Appointment scheduling rules and time-slot bookkeeping.

Every check raises ``BookingError`` with a human readable message; the
blueprints translate it into a 422 response. Functions that touch the
database expect an application context and never commit: the caller owns
the transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_, select

from nailsalon.extensions import db
from nailsalon.models import Appointment, Employee, Service, TimeSlot

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """A booking or reschedule request breaks a scheduling rule."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class BookingRules:
    open_hour: int = 9
    close_hour: int = 18
    # ISO weekdays, Monday = 1
    business_days: List[int] = field(default_factory=lambda: [1, 2, 3, 4, 5, 6])
    lead_hours: int = 24
    max_reschedules: int = 2
    round_minutes: int = 30

    @classmethod
    def from_config(cls, config) -> "BookingRules":
        return cls(
            open_hour=config.get("BUSINESS_OPEN_HOUR", 9),
            close_hour=config.get("BUSINESS_CLOSE_HOUR", 18),
            business_days=list(config.get("BUSINESS_DAYS", [1, 2, 3, 4, 5, 6])),
            lead_hours=config.get("BOOKING_LEAD_HOURS", 24),
            max_reschedules=config.get("MAX_RESCHEDULES", 2),
            round_minutes=config.get("RESCHEDULE_ROUND_MINUTES", 30),
        )


def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    # Half-open: touching intervals do not overlap
    return a_start < b_end and b_start < a_end


def check_lead_time(start: datetime, now: datetime, rules: BookingRules) -> None:
    if start < now + timedelta(hours=rules.lead_hours):
        raise BookingError(
            f"Appointments must be booked at least {rules.lead_hours} hours in advance"
        )


def check_business_hours(start: datetime, end: datetime, rules: BookingRules) -> None:
    if start.isoweekday() not in rules.business_days:
        raise BookingError("The salon is closed on the requested day")

    opening = datetime.combine(start.date(), time(rules.open_hour))
    closing = datetime.combine(start.date(), time(0)) + timedelta(hours=rules.close_hour)
    if start < opening or end > closing:
        raise BookingError(
            f"Appointments must fall between {rules.open_hour:02d}:00 "
            f"and {rules.close_hour:02d}:00"
        )


def round_down(start: datetime, minutes: int) -> datetime:
    return start.replace(minute=start.minute - start.minute % minutes, second=0, microsecond=0)


def find_conflicts(
    start: datetime,
    end: datetime,
    employee_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> List[Appointment]:
    """
    Non-cancelled appointments intersecting [start, end).

    With an employee, that employee's agenda and every appointment not yet
    assigned to anyone are searched; without one every appointment in the
    salon counts.
    """
    stmt = select(Appointment).where(
        Appointment.status != "cancelled",
        Appointment.scheduled_at < end,
        Appointment.ends_at > start,
    )
    if employee_id is not None:
        stmt = stmt.where(
            or_(Appointment.employee_id == employee_id, Appointment.employee_id.is_(None))
        )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    return list(db.session.scalars(stmt.order_by(Appointment.scheduled_at)))


def check_no_overlap(
    start: datetime,
    end: datetime,
    employee_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> None:
    conflicts = find_conflicts(start, end, employee_id, exclude_id)
    if conflicts:
        logger.info(
            "Rejected %s-%s for employee %s: overlaps appointment(s) %s",
            start,
            end,
            employee_id,
            [a.id for a in conflicts],
        )
        raise BookingError("The requested time overlaps another appointment")


def check_employee_can_serve(employee: Employee, service: Service) -> None:
    if not employee.is_active:
        raise BookingError("The selected employee is not active")
    if not employee.offers_service(service.id):
        raise BookingError("The selected employee does not offer this service")


def check_can_reschedule(appointment: Appointment, rules: BookingRules) -> None:
    if appointment.reschedule_count >= rules.max_reschedules:
        raise BookingError(
            f"Appointments can only be rescheduled {rules.max_reschedules} times"
        )


def generate_slot_times(
    start_time: time, end_time: time, duration: int, step: Optional[int] = None
) -> List[Tuple[time, time]]:
    """Consecutive (start, end) pairs that fit inside the window, same day only."""
    if duration <= 0:
        raise ValueError("duration must be positive")
    step = step or duration

    anchor = date(2000, 1, 1)
    current = datetime.combine(anchor, start_time)
    limit = datetime.combine(anchor, end_time)
    length = timedelta(minutes=duration)

    slots = []
    while current + length <= limit:
        slots.append((current.time(), (current + length).time()))
        current += timedelta(minutes=step)
    return slots


def _slot_exists(service_id, day, start_time, employee_id) -> bool:
    stmt = select(TimeSlot.id).where(
        TimeSlot.service_id == service_id,
        TimeSlot.date == day,
        TimeSlot.start_time == start_time,
    )
    if employee_id is None:
        stmt = stmt.where(TimeSlot.employee_id.is_(None))
    else:
        stmt = stmt.where(TimeSlot.employee_id == employee_id)
    return db.session.scalar(stmt.limit(1)) is not None


def eligible_employees(service: Service, employee_id: Optional[int] = None) -> List[Employee]:
    employees = [e for e in service.employees if e.is_active]
    if employee_id is not None:
        employees = [e for e in employees if e.id == employee_id]
    return sorted(employees, key=lambda e: e.id)


def materialize_slots(service: Service, day: date, employee_id: Optional[int] = None) -> int:
    """
    Create ``available`` slots for ``day`` out of the weekly schedules of every
    active employee offering ``service``.

    Existing slots and times already taken by the employee are skipped, so the
    call is safe to repeat.
    """
    weekday = day.isoweekday()
    created = 0

    for employee in eligible_employees(service, employee_id):
        for schedule in employee.schedules:
            if not schedule.is_active or schedule.day_of_week != weekday:
                continue

            for start_t, end_t in generate_slot_times(
                schedule.start_time, schedule.end_time, service.duration_minutes
            ):
                if _slot_exists(service.id, day, start_t, employee.id):
                    continue
                if find_conflicts(
                    datetime.combine(day, start_t),
                    datetime.combine(day, end_t),
                    employee.id,
                ):
                    continue

                db.session.add(
                    TimeSlot(
                        service_id=service.id,
                        employee_id=employee.id,
                        date=day,
                        start_time=start_t,
                        end_time=end_t,
                        status="available",
                    )
                )
                db.session.flush()
                created += 1

    if created:
        logger.info(
            "Materialized %d slot(s) for service %s on %s", created, service.id, day
        )
    return created


def create_slots_in_range(
    service: Service,
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    duration: int,
    days_of_week,
    employee_id: Optional[int] = None,
) -> Tuple[int, int]:
    """Fixed-step bulk generation. Returns ``(processed_days, created_slots)``."""
    processed_days = 0
    created_slots = 0
    wanted = set(days_of_week)

    day = start_date
    while day <= end_date:
        if day.isoweekday() in wanted:
            processed_days += 1
            for start_t, end_t in generate_slot_times(start_time, end_time, duration):
                if _slot_exists(service.id, day, start_t, employee_id):
                    continue
                db.session.add(
                    TimeSlot(
                        service_id=service.id,
                        employee_id=employee_id,
                        date=day,
                        start_time=start_t,
                        end_time=end_t,
                        status="available",
                    )
                )
                db.session.flush()
                created_slots += 1
        day += timedelta(days=1)

    logger.info(
        "Bulk slots for service %s: %d day(s) processed, %d slot(s) created",
        service.id,
        processed_days,
        created_slots,
    )
    return processed_days, created_slots


def reserve_slot(slot: TimeSlot, appointment: Appointment) -> None:
    slot.status = "reserved"
    slot.appointment = appointment


def release_slots(appointment: Appointment) -> int:
    released = 0
    for slot in list(appointment.time_slots):
        slot.status = "available"
        slot.appointment = None
        released += 1
    return released


def find_bookable_slot(
    service_id: int, employee_id: Optional[int], start: datetime
) -> Optional[TimeSlot]:
    stmt = select(TimeSlot).where(
        TimeSlot.service_id == service_id,
        TimeSlot.date == start.date(),
        TimeSlot.start_time == start.time(),
        TimeSlot.status == "available",
    )
    if employee_id is not None:
        stmt = stmt.where(TimeSlot.employee_id == employee_id)
    # Prefer slots assigned to an employee, lowest id first
    stmt = stmt.order_by(TimeSlot.employee_id.is_(None), TimeSlot.id)
    return db.session.scalars(stmt.limit(1)).first()


def round_half_up(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_deposit(price, service: Service) -> Decimal:
    if not service.requires_deposit:
        return Decimal("0.00")
    percentage = Decimal(service.deposit_percentage or 0)
    # Deposits are charged in whole pesos
    deposit = Decimal(price) * percentage / Decimal(100)
    return deposit.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
