# Salon service catalogue
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import Appointment, Service
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import service_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_decimal,
    parse_int,
    require_fields,
)

services_bp = Blueprint("services", __name__, url_prefix="/api/services")


def _apply_fields(service, data):
    if "name" in data:
        if not data["name"]:
            raise ValidationError("name cannot be empty")
        service.name = data["name"]
    if "description" in data:
        service.description = data["description"]
    if "duration_minutes" in data:
        service.duration_minutes = parse_int(data["duration_minutes"], "duration_minutes", 1)
    if "price" in data:
        service.price = parse_decimal(data["price"], "price", 0)
    if "is_active" in data:
        service.is_active = parse_bool(data["is_active"])
    if "requires_deposit" in data:
        service.requires_deposit = parse_bool(data["requires_deposit"])
    if "deposit_percentage" in data:
        service.deposit_percentage = parse_decimal(
            data["deposit_percentage"], "deposit_percentage", 0, 100
        )


@services_bp.route("", methods=["GET"])
@admin_required
def list_services():
    """
    List all services
    ---
    tags:
      - Services
    responses:
      200:
        description: Every service, active or not, ordered by name
    """
    services = db.session.scalars(select(Service).order_by(Service.name)).all()
    return jsonify([service_to_dict(s) for s in services]), 200


@services_bp.route("/public", methods=["GET"])
def list_public_services():
    """
    Active services offered to clients
    ---
    tags:
      - Services
    responses:
      200:
        description: Active services ordered by name
    """
    services = db.session.scalars(
        select(Service).where(Service.is_active.is_(True)).order_by(Service.name)
    ).all()
    return jsonify([service_to_dict(s) for s in services]), 200


@services_bp.route("", methods=["POST"])
@admin_required
def create_service():
    """
    Create a service
    ---
    tags:
      - Services
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, duration_minutes, price]
          properties:
            name:
              type: string
            description:
              type: string
            duration_minutes:
              type: integer
            price:
              type: number
            requires_deposit:
              type: boolean
            deposit_percentage:
              type: number
    responses:
      201:
        description: Service created
      400:
        description: Invalid input
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["name", "duration_minutes", "price"])

    service = Service(is_active=True, requires_deposit=False, deposit_percentage=0)
    _apply_fields(service, data)

    try:
        db.session.add(service)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info("Created service %s (%s)", service.id, service.name)
    return jsonify(service_to_dict(service)), 201


@services_bp.route("/<int:service_id>", methods=["GET"])
@admin_required
def get_service(service_id):
    service = db.session.get(Service, service_id)
    if not service:
        return jsonify({"error": "Service not found"}), 404
    return jsonify(service_to_dict(service)), 200


@services_bp.route("/<int:service_id>", methods=["PUT"])
@admin_required
def update_service(service_id):
    """
    Update a service
    ---
    tags:
      - Services
    responses:
      200:
        description: Updated service
      404:
        description: Service not found
    """
    service = db.session.get(Service, service_id)
    if not service:
        return jsonify({"error": "Service not found"}), 404

    data = request.get_json(silent=True) or {}
    _apply_fields(service, data)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(service_to_dict(service)), 200


@services_bp.route("/<int:service_id>", methods=["DELETE"])
@admin_required
def delete_service(service_id):
    """
    Delete a service
    ---
    tags:
      - Services
    responses:
      200:
        description: Service deleted
      404:
        description: Service not found
      422:
        description: Service still has appointments
    """
    service = db.session.get(Service, service_id)
    if not service:
        return jsonify({"error": "Service not found"}), 404

    has_appointments = db.session.scalar(
        select(Appointment.id).where(Appointment.service_id == service_id).limit(1)
    )
    if has_appointments:
        return (
            jsonify({"error": "Service has appointments; deactivate it instead"}),
            422,
        )

    try:
        db.session.delete(service)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Service deleted"}), 200
