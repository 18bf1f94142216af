# Employees, the services they offer and their weekly schedules
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import Employee, EmployeeSchedule, Service, TimeSlot
from nailsalon.api.time_slots import parse_bulk_input
from nailsalon.services.scheduling import create_slots_in_range
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import (
    employee_public_dict,
    employee_to_dict,
    schedule_to_dict,
    time_slot_to_dict,
)
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_date,
    parse_int,
    parse_time,
    require_fields,
    validate_email,
)

employees_bp = Blueprint("employees", __name__, url_prefix="/api/employees")


def _email_taken(email, exclude_id=None):
    stmt = select(Employee.id).where(Employee.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Employee.id != exclude_id)
    return db.session.scalar(stmt.limit(1)) is not None


def _load_services(service_ids):
    if not isinstance(service_ids, list):
        raise ValidationError("service_ids must be a list of service ids")
    ids = {parse_int(i, "service_ids") for i in service_ids}
    services = db.session.scalars(select(Service).where(Service.id.in_(ids))).all()
    if len(services) != len(ids):
        raise ValidationError("service_ids contains unknown services")
    return list(services)


def _apply_fields(employee, data):
    if "name" in data:
        if not data["name"]:
            raise ValidationError("name cannot be empty")
        employee.name = data["name"]
    if "email" in data:
        employee.email = validate_email(data["email"])
    if "phone" in data:
        employee.phone = data["phone"]
    if "is_active" in data:
        employee.is_active = parse_bool(data["is_active"])
    if "specialties" in data:
        specialties = data["specialties"] or []
        if not isinstance(specialties, list):
            raise ValidationError("specialties must be a list")
        employee.specialties = [str(s) for s in specialties]
    if "notes" in data:
        employee.notes = data["notes"]


@employees_bp.route("", methods=["GET"])
@admin_required
def list_employees():
    """
    List employees
    ---
    tags:
      - Employees
    parameters:
      - {in: query, name: active, type: boolean}
      - {in: query, name: service_id, type: integer}
    responses:
      200:
        description: Employees ordered by name, with services and schedules
    """
    stmt = select(Employee).order_by(Employee.name)
    if request.args.get("active") is not None:
        stmt = stmt.where(Employee.is_active.is_(parse_bool(request.args["active"])))
    if request.args.get("service_id"):
        service_id = parse_int(request.args["service_id"], "service_id")
        stmt = stmt.where(Employee.services.any(Service.id == service_id))
    employees = db.session.scalars(stmt).all()
    return jsonify([employee_to_dict(e, include_schedules=True) for e in employees]), 200


@employees_bp.route("/public", methods=["GET"])
def list_public_employees():
    """
    Active employees, optionally only those offering a service
    ---
    tags:
      - Employees
    parameters:
      - {in: query, name: service_id, type: integer}
    responses:
      200:
        description: Employees that can be picked when booking
    """
    stmt = select(Employee).where(Employee.is_active.is_(True)).order_by(Employee.name)
    if request.args.get("service_id"):
        service_id = parse_int(request.args["service_id"], "service_id")
        stmt = stmt.where(Employee.services.any(Service.id == service_id))
    employees = db.session.scalars(stmt).all()
    return jsonify([employee_public_dict(e) for e in employees]), 200


@employees_bp.route("", methods=["POST"])
@admin_required
def create_employee():
    """
    Create an employee
    ---
    tags:
      - Employees
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, email]
          properties:
            name:
              type: string
            email:
              type: string
            phone:
              type: string
            specialties:
              type: array
              items:
                type: string
            service_ids:
              type: array
              items:
                type: integer
    responses:
      201:
        description: Employee created
      422:
        description: Email already in use
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["name", "email"])
    if _email_taken(data["email"]):
        return jsonify({"error": "An employee with this email already exists"}), 422

    employee = Employee(is_active=True, specialties=[])
    _apply_fields(employee, data)
    if data.get("service_ids") is not None:
        employee.services = _load_services(data["service_ids"])

    try:
        db.session.add(employee)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info("Created employee %s (%s)", employee.id, employee.name)
    return jsonify(employee_to_dict(employee, include_schedules=True)), 201


@employees_bp.route("/<int:employee_id>", methods=["GET"])
@admin_required
def get_employee(employee_id):
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404
    return jsonify(employee_to_dict(employee, include_schedules=True)), 200


@employees_bp.route("/<int:employee_id>", methods=["PUT"])
@admin_required
def update_employee(employee_id):
    """
    Update an employee; service_ids replaces the offered services
    ---
    tags:
      - Employees
    responses:
      200:
        description: Updated employee
      404:
        description: Employee not found
      422:
        description: Email already in use
    """
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404

    data = request.get_json(silent=True) or {}
    if data.get("email") and _email_taken(data["email"], exclude_id=employee_id):
        return jsonify({"error": "An employee with this email already exists"}), 422

    _apply_fields(employee, data)
    if "service_ids" in data:
        employee.services = _load_services(data["service_ids"] or [])

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(employee_to_dict(employee, include_schedules=True)), 200


@employees_bp.route("/<int:employee_id>", methods=["DELETE"])
@admin_required
def delete_employee(employee_id):
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404

    try:
        db.session.delete(employee)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Employee deleted"}), 200


@employees_bp.route("/<int:employee_id>/schedule", methods=["GET"])
@admin_required
def get_employee_slots(employee_id):
    """
    An employee's time slots within a date range
    ---
    tags:
      - Employees
    parameters:
      - {in: query, name: start_date, type: string, required: true}
      - {in: query, name: end_date, type: string, required: true}
      - {in: query, name: service_id, type: integer}
    responses:
      200:
        description: Slots ordered by date and start time
    """
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404

    require_fields(request.args, ["start_date", "end_date"])
    start_date = parse_date(request.args["start_date"], "start_date")
    end_date = parse_date(request.args["end_date"], "end_date")
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")

    stmt = select(TimeSlot).where(
        TimeSlot.employee_id == employee_id,
        TimeSlot.date >= start_date,
        TimeSlot.date <= end_date,
    )
    if request.args.get("service_id"):
        stmt = stmt.where(
            TimeSlot.service_id == parse_int(request.args["service_id"], "service_id")
        )
    slots = db.session.scalars(stmt.order_by(TimeSlot.date, TimeSlot.start_time)).all()
    return (
        jsonify(
            {
                "employee": employee_public_dict(employee),
                "slots": [time_slot_to_dict(s) for s in slots],
            }
        ),
        200,
    )


@employees_bp.route("/<int:employee_id>/slots", methods=["POST"])
@admin_required
def create_employee_slots(employee_id):
    """
    Bulk-create fixed-step slots assigned to this employee
    ---
    tags:
      - Employees
    responses:
      201:
        description: processed_days and created_slots counts
      422:
        description: The employee does not offer the service
    """
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404

    data = request.get_json(silent=True) or {}
    require_fields(data, ["service_id"])
    service = db.session.get(Service, parse_int(data["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404
    if not employee.offers_service(service.id):
        return jsonify({"error": "The employee does not offer this service"}), 422

    params = parse_bulk_input(data, service)
    try:
        processed_days, created_slots = create_slots_in_range(
            service, employee_id=employee.id, **params
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return (
        jsonify(
            {
                "message": f"Created {created_slots} slot(s) for {employee.name}",
                "processed_days": processed_days,
                "created_slots": created_slots,
            }
        ),
        201,
    )


@employees_bp.route("/<int:employee_id>/schedules", methods=["GET"])
@admin_required
def get_weekly_schedules(employee_id):
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404
    return jsonify([schedule_to_dict(s) for s in employee.schedules]), 200


@employees_bp.route("/<int:employee_id>/schedules", methods=["PUT"])
@admin_required
def replace_weekly_schedules(employee_id):
    """
    Replace the employee's weekly working hours
    ---
    tags:
      - Employees
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            schedules:
              type: array
              items:
                type: object
                properties:
                  day_of_week:
                    type: integer
                    description: ISO weekday, 1 = Monday, 7 = Sunday
                  start_time:
                    type: string
                  end_time:
                    type: string
                  is_active:
                    type: boolean
                  notes:
                    type: string
    responses:
      200:
        description: The stored schedules
      400:
        description: Invalid rows
    """
    employee = db.session.get(Employee, employee_id)
    if not employee:
        return jsonify({"error": "Employee not found"}), 404

    data = request.get_json(silent=True) or {}
    rows = data.get("schedules")
    if not isinstance(rows, list):
        raise ValidationError("schedules must be a list")

    schedules = []
    seen = set()
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError("each schedule must be an object")
        require_fields(row, ["day_of_week", "start_time", "end_time"])
        day = parse_int(row["day_of_week"], "day_of_week", 1, 7)
        start_time = parse_time(row["start_time"], "start_time")
        end_time = parse_time(row["end_time"], "end_time")
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")
        if (day, start_time) in seen:
            raise ValidationError("Duplicate schedule for the same day and start time")
        seen.add((day, start_time))
        schedules.append(
            EmployeeSchedule(
                day_of_week=day,
                start_time=start_time,
                end_time=end_time,
                is_active=parse_bool(row.get("is_active", True)),
                notes=row.get("notes"),
            )
        )

    try:
        employee.schedules.clear()
        db.session.flush()
        employee.schedules.extend(schedules)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info(
        "Replaced schedules for employee %s (%d rows)", employee.id, len(schedules)
    )
    return jsonify([schedule_to_dict(s) for s in employee.schedules]), 200
