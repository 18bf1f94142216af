# Bookable time slots: admin management plus the public availability endpoints
from datetime import date, datetime, timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import SLOT_STATUSES, Appointment, Employee, Service, TimeSlot
from nailsalon.services.scheduling import (
    BookingRules,
    create_slots_in_range,
    eligible_employees,
    materialize_slots,
)
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import time_slot_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_date,
    parse_int,
    parse_time,
    parse_weekdays,
    require_fields,
)

time_slots_bp = Blueprint("time_slots", __name__, url_prefix="/api/time-slots")

MAX_RANGE_DAYS = 92


def parse_bulk_input(data, service):
    """Validate a bulk slot request; returns the keyword arguments for create_slots_in_range."""
    require_fields(data, ["start_date", "end_date", "start_time", "end_time"])
    start_date = parse_date(data["start_date"], "start_date")
    end_date = parse_date(data["end_date"], "end_date")
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    if (end_date - start_date).days > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")

    start_time = parse_time(data["start_time"], "start_time")
    end_time = parse_time(data["end_time"], "end_time")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")

    if data.get("duration_minutes") is not None:
        duration = parse_int(data["duration_minutes"], "duration_minutes", 15, 480)
    else:
        duration = service.duration_minutes

    if data.get("days_of_week") is not None:
        days_of_week = parse_weekdays(data["days_of_week"])
    else:
        days_of_week = [1, 2, 3, 4, 5, 6]

    return {
        "start_date": start_date,
        "end_date": end_date,
        "start_time": start_time,
        "end_time": end_time,
        "duration": duration,
        "days_of_week": days_of_week,
    }


def _get_employee_arg(value):
    if value in (None, ""):
        return None, None
    employee = db.session.get(Employee, parse_int(value, "employee_id"))
    if not employee:
        return None, (jsonify({"error": "Employee not found"}), 404)
    return employee, None


@time_slots_bp.route("", methods=["GET"])
@admin_required
def list_time_slots():
    """
    List time slots
    ---
    tags:
      - Time Slots
    parameters:
      - {in: query, name: service_id, type: integer}
      - {in: query, name: employee_id, type: integer}
      - {in: query, name: date, type: string}
      - {in: query, name: status, type: string}
      - {in: query, name: future, type: boolean}
    responses:
      200:
        description: Slots ordered by date and start time
    """
    args = request.args
    stmt = select(TimeSlot)
    if args.get("service_id"):
        stmt = stmt.where(TimeSlot.service_id == parse_int(args["service_id"], "service_id"))
    if args.get("employee_id"):
        stmt = stmt.where(TimeSlot.employee_id == parse_int(args["employee_id"], "employee_id"))
    if args.get("date"):
        stmt = stmt.where(TimeSlot.date == parse_date(args["date"]))
    if args.get("status"):
        if args["status"] not in SLOT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(SLOT_STATUSES)}")
        stmt = stmt.where(TimeSlot.status == args["status"])
    if parse_bool(args.get("future", False)):
        stmt = stmt.where(TimeSlot.date >= date.today())

    slots = db.session.scalars(stmt.order_by(TimeSlot.date, TimeSlot.start_time)).all()
    return jsonify([time_slot_to_dict(s) for s in slots]), 200


@time_slots_bp.route("", methods=["POST"])
@admin_required
def create_time_slot():
    """
    Create a single time slot
    ---
    tags:
      - Time Slots
    responses:
      201:
        description: Slot created
      400:
        description: Invalid input
      404:
        description: Service or employee not found
      422:
        description: A slot already exists at that time
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["service_id", "date", "start_time", "end_time"])

    service = db.session.get(Service, parse_int(data["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404
    employee, error = _get_employee_arg(data.get("employee_id"))
    if error:
        return error

    slot_date = parse_date(data["date"])
    start_time = parse_time(data["start_time"], "start_time")
    end_time = parse_time(data["end_time"], "end_time")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")
    status = data.get("status", "available")
    if status not in ("available", "blocked"):
        raise ValidationError("status must be 'available' or 'blocked'")

    duplicate = select(TimeSlot.id).where(
        TimeSlot.service_id == service.id,
        TimeSlot.date == slot_date,
        TimeSlot.start_time == start_time,
    )
    if employee:
        duplicate = duplicate.where(TimeSlot.employee_id == employee.id)
    else:
        duplicate = duplicate.where(TimeSlot.employee_id.is_(None))
    if db.session.scalar(duplicate.limit(1)):
        return jsonify({"error": "A slot already exists for this service, date and time"}), 422

    slot = TimeSlot(
        service_id=service.id,
        employee_id=employee.id if employee else None,
        date=slot_date,
        start_time=start_time,
        end_time=end_time,
        status=status,
        notes=data.get("notes"),
    )
    try:
        db.session.add(slot)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(time_slot_to_dict(slot)), 201


@time_slots_bp.route("/<int:slot_id>", methods=["GET"])
@admin_required
def get_time_slot(slot_id):
    slot = db.session.get(TimeSlot, slot_id)
    if not slot:
        return jsonify({"error": "Time slot not found"}), 404
    return jsonify(time_slot_to_dict(slot)), 200


@time_slots_bp.route("/<int:slot_id>", methods=["PUT"])
@admin_required
def update_time_slot(slot_id):
    """
    Update a slot's status, appointment link or notes
    ---
    tags:
      - Time Slots
    responses:
      200:
        description: Updated slot
      404:
        description: Slot or appointment not found
    """
    slot = db.session.get(TimeSlot, slot_id)
    if not slot:
        return jsonify({"error": "Time slot not found"}), 404

    data = request.get_json(silent=True) or {}
    if "status" in data:
        if data["status"] not in SLOT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(SLOT_STATUSES)}")
        slot.status = data["status"]
    if "appointment_id" in data:
        if data["appointment_id"] is None:
            slot.appointment_id = None
        else:
            appointment = db.session.get(
                Appointment, parse_int(data["appointment_id"], "appointment_id")
            )
            if not appointment:
                db.session.rollback()
                return jsonify({"error": "Appointment not found"}), 404
            slot.appointment_id = appointment.id
    if "notes" in data:
        slot.notes = data["notes"]

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(time_slot_to_dict(slot)), 200


@time_slots_bp.route("/<int:slot_id>", methods=["DELETE"])
@admin_required
def delete_time_slot(slot_id):
    slot = db.session.get(TimeSlot, slot_id)
    if not slot:
        return jsonify({"error": "Time slot not found"}), 404

    try:
        db.session.delete(slot)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Time slot deleted"}), 200


@time_slots_bp.route("/bulk", methods=["POST"])
@admin_required
def create_bulk_time_slots():
    """
    Create fixed-step slots for a service over a date range
    ---
    tags:
      - Time Slots
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [service_id, start_date, end_date, start_time, end_time]
          properties:
            service_id:
              type: integer
            start_date:
              type: string
            end_date:
              type: string
            start_time:
              type: string
              example: "09:00"
            end_time:
              type: string
              example: "18:00"
            duration_minutes:
              type: integer
              description: 15 to 480, defaults to the service duration
            days_of_week:
              type: array
              items:
                type: integer
              description: ISO weekdays, defaults to Monday to Saturday
            employee_id:
              type: integer
    responses:
      201:
        description: processed_days and created_slots counts
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["service_id"])
    service = db.session.get(Service, parse_int(data["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404
    employee, error = _get_employee_arg(data.get("employee_id"))
    if error:
        return error

    params = parse_bulk_input(data, service)
    try:
        processed_days, created_slots = create_slots_in_range(
            service, employee_id=employee.id if employee else None, **params
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error("Bulk slot creation failed: %s", e)
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return (
        jsonify(
            {
                "message": f"Processed {processed_days} day(s), created {created_slots} new slot(s)",
                "processed_days": processed_days,
                "created_slots": created_slots,
            }
        ),
        201,
    )


@time_slots_bp.route("/<int:slot_id>/toggle-block", methods=["PATCH"])
@admin_required
def toggle_block(slot_id):
    """
    Block an available slot or release a blocked one
    ---
    tags:
      - Time Slots
    responses:
      200:
        description: New slot state
      422:
        description: Slot is reserved or cancelled
    """
    slot = db.session.get(TimeSlot, slot_id)
    if not slot:
        return jsonify({"error": "Time slot not found"}), 404

    if slot.status == "blocked":
        slot.status = "available"
        message = "Slot unblocked"
    elif slot.status == "available":
        slot.status = "blocked"
        message = "Slot blocked"
    else:
        return jsonify({"error": f"A {slot.status} slot cannot be blocked"}), 422

    db.session.commit()
    return jsonify({"message": message, "slot": time_slot_to_dict(slot)}), 200


@time_slots_bp.route("/available", methods=["GET"])
def get_available_slots():
    """
    Bookable slots for a service on a day
    ---
    tags:
      - Time Slots
    parameters:
      - {in: query, name: service_id, type: integer, required: true}
      - {in: query, name: date, type: string, required: true}
      - {in: query, name: employee_id, type: integer}
    responses:
      200:
        description: Available slots ordered by start time
      400:
        description: Missing parameters or a past date
      404:
        description: Service or employee not found
    """
    args = request.args
    require_fields(args, ["service_id", "date"])
    service = db.session.get(Service, parse_int(args["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404
    employee, error = _get_employee_arg(args.get("employee_id"))
    if error:
        return error

    day = parse_date(args["date"])
    if day < date.today():
        raise ValidationError("date must be today or later")

    try:
        materialize_slots(service, day, employee.id if employee else None)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error("Slot materialization failed for %s: %s", day, e)
        return jsonify({"error": "Database error", "details": str(e)}), 500

    stmt = select(TimeSlot).where(
        TimeSlot.service_id == service.id,
        TimeSlot.date == day,
        TimeSlot.status == "available",
    )
    if employee:
        stmt = stmt.where(TimeSlot.employee_id == employee.id)
    slots = db.session.scalars(stmt.order_by(TimeSlot.start_time, TimeSlot.employee_id)).all()

    rules = BookingRules.from_config(current_app.config)
    earliest = datetime.now() + timedelta(hours=rules.lead_hours)
    bookable = [s for s in slots if datetime.combine(s.date, s.start_time) >= earliest]
    return jsonify([time_slot_to_dict(s) for s in bookable]), 200


@time_slots_bp.route("/available-days", methods=["GET"])
def get_available_days():
    """
    Days in a range on which someone offering the service works
    ---
    tags:
      - Time Slots
    parameters:
      - {in: query, name: service_id, type: integer, required: true}
      - {in: query, name: start_date, type: string, required: true}
      - {in: query, name: end_date, type: string, required: true}
      - {in: query, name: employee_id, type: integer}
    responses:
      200:
        description: List of YYYY-MM-DD dates
    """
    args = request.args
    require_fields(args, ["service_id", "start_date", "end_date"])
    service = db.session.get(Service, parse_int(args["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404
    employee, error = _get_employee_arg(args.get("employee_id"))
    if error:
        return error

    start_date = parse_date(args["start_date"], "start_date")
    end_date = parse_date(args["end_date"], "end_date")
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    if (end_date - start_date).days > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")

    working_days = set()
    for emp in eligible_employees(service, employee.id if employee else None):
        working_days.update(s.day_of_week for s in emp.schedules if s.is_active)

    days = []
    day = start_date
    while day <= end_date:
        if day.isoweekday() in working_days:
            days.append(day.isoformat())
        day += timedelta(days=1)
    return jsonify(days), 200
