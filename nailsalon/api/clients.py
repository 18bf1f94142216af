from flask import Blueprint, jsonify, request
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import Appointment, Client
from nailsalon.services.scheduling import release_slots
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import appointment_to_dict, client_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    require_fields,
    validate_email,
)

clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


def _whatsapp_taken(whatsapp, exclude_id=None):
    stmt = select(Client.id).where(Client.whatsapp == whatsapp)
    if exclude_id is not None:
        stmt = stmt.where(Client.id != exclude_id)
    return db.session.scalar(stmt.limit(1)) is not None


def _apply_fields(client, data):
    if "name" in data:
        if not data["name"]:
            raise ValidationError("name cannot be empty")
        client.name = data["name"]
    if "whatsapp" in data:
        if not data["whatsapp"]:
            raise ValidationError("whatsapp cannot be empty")
        client.whatsapp = str(data["whatsapp"]).strip()
    if "email" in data:
        client.email = validate_email(data["email"]) if data["email"] else None
    if "notes" in data:
        client.notes = data["notes"]
    if "is_active" in data:
        client.is_active = parse_bool(data["is_active"])


@clients_bp.route("", methods=["GET"])
@admin_required
def list_clients():
    """
    List clients
    ---
    tags:
      - Clients
    parameters:
      - in: query
        name: search
        type: string
        description: Matches name, whatsapp or email
    responses:
      200:
        description: Clients ordered by name
    """
    stmt = select(Client).order_by(Client.name)
    search = request.args.get("search")
    if search:
        like = f"%{search}%"
        stmt = stmt.where(
            or_(Client.name.ilike(like), Client.whatsapp.ilike(like), Client.email.ilike(like))
        )
    clients = db.session.scalars(stmt).all()
    return jsonify([client_to_dict(c) for c in clients]), 200


@clients_bp.route("", methods=["POST"])
@admin_required
def create_client():
    """
    Create a client
    ---
    tags:
      - Clients
    responses:
      201:
        description: Client created
      400:
        description: Missing or invalid fields
      422:
        description: WhatsApp number already registered
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["name", "whatsapp"])

    client = Client(is_active=True)
    _apply_fields(client, data)
    if _whatsapp_taken(client.whatsapp):
        return jsonify({"error": "A client with this WhatsApp number already exists"}), 422

    try:
        db.session.add(client)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(client_to_dict(client)), 201


@clients_bp.route("/<int:client_id>", methods=["GET"])
@admin_required
def get_client(client_id):
    client = db.session.get(Client, client_id)
    if not client:
        return jsonify({"error": "Client not found"}), 404

    appointments = db.session.scalars(
        select(Appointment)
        .where(Appointment.client_id == client_id)
        .order_by(Appointment.scheduled_at.desc())
    ).all()
    data = client_to_dict(client)
    data["appointments"] = [appointment_to_dict(a) for a in appointments]
    return jsonify(data), 200


@clients_bp.route("/<int:client_id>", methods=["PUT"])
@admin_required
def update_client(client_id):
    client = db.session.get(Client, client_id)
    if not client:
        return jsonify({"error": "Client not found"}), 404

    data = request.get_json(silent=True) or {}
    if data.get("whatsapp") and _whatsapp_taken(
        str(data["whatsapp"]).strip(), exclude_id=client_id
    ):
        return jsonify({"error": "A client with this WhatsApp number already exists"}), 422
    _apply_fields(client, data)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(client_to_dict(client)), 200


@clients_bp.route("/<int:client_id>", methods=["DELETE"])
@admin_required
def delete_client(client_id):
    client = db.session.get(Client, client_id)
    if not client:
        return jsonify({"error": "Client not found"}), 404

    try:
        for appointment in client.appointments:
            release_slots(appointment)
        db.session.delete(client)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Client deleted"}), 200
