from datetime import datetime

from flask import Blueprint, jsonify, request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import Promotion, Service
from nailsalon.services import promotions
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import promotion_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_date,
    parse_datetime,
    parse_decimal,
    parse_int,
    parse_weekdays,
    require_fields,
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


def _code_taken(code, exclude_id=None):
    stmt = select(Promotion.id).where(Promotion.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Promotion.id != exclude_id)
    return db.session.scalar(stmt.limit(1)) is not None


def _optional_decimal(data, field):
    if data.get(field) is None:
        return None
    return parse_decimal(data[field], field, 0)


def _apply_fields(promotion, data):
    if "name" in data:
        if not data["name"]:
            raise ValidationError("name cannot be empty")
        promotion.name = data["name"]
    if "description" in data:
        promotion.description = data["description"]
    if "code" in data:
        if not data["code"]:
            raise ValidationError("code cannot be empty")
        promotion.code = str(data["code"]).strip()
    if "type" in data:
        if data["type"] not in ("percentage", "fixed"):
            raise ValidationError("type must be 'percentage' or 'fixed'")
        promotion.type = data["type"]
    if "value" in data:
        promotion.value = parse_decimal(data["value"], "value", 0)
    if "min_amount" in data:
        promotion.min_amount = _optional_decimal(data, "min_amount")
    if "max_discount" in data:
        promotion.max_discount = _optional_decimal(data, "max_discount")
    if "usage_limit" in data:
        promotion.usage_limit = (
            parse_int(data["usage_limit"], "usage_limit", 1)
            if data["usage_limit"] is not None
            else None
        )
    if "is_active" in data:
        promotion.is_active = parse_bool(data["is_active"])
    if "starts_at" in data:
        promotion.starts_at = parse_datetime(data["starts_at"], "starts_at")
    if "expires_at" in data:
        promotion.expires_at = parse_datetime(data["expires_at"], "expires_at")
    if "applicable_days" in data:
        promotion.applicable_days = (
            parse_weekdays(data["applicable_days"], "applicable_days")
            if data["applicable_days"]
            else []
        )
    if "applicable_services" in data:
        ids = data["applicable_services"] or []
        if not isinstance(ids, list):
            raise ValidationError("applicable_services must be a list of service ids")
        ids = sorted({parse_int(i, "applicable_services") for i in ids})
        known = (
            db.session.scalar(select(func.count(Service.id)).where(Service.id.in_(ids)))
            if ids
            else 0
        )
        if known != len(ids):
            raise ValidationError("applicable_services contains unknown services")
        promotion.applicable_services = ids

    if promotion.type == "percentage" and promotion.value is not None and promotion.value > 100:
        raise ValidationError("A percentage promotion cannot exceed 100")
    if promotion.starts_at and promotion.expires_at and promotion.starts_at >= promotion.expires_at:
        raise ValidationError("starts_at must be before expires_at")


@promotions_bp.route("", methods=["GET"])
@admin_required
def list_promotions():
    """
    List promotions
    ---
    tags:
      - Promotions
    parameters:
      - {in: query, name: active, type: boolean}
      - {in: query, name: code, type: string}
    responses:
      200:
        description: Promotions, newest first
    """
    stmt = select(Promotion)
    if request.args.get("active") is not None:
        stmt = stmt.where(Promotion.is_active.is_(parse_bool(request.args["active"])))
    if request.args.get("code"):
        stmt = stmt.where(Promotion.code == request.args["code"])
    items = db.session.scalars(stmt.order_by(Promotion.id.desc())).all()
    return jsonify([promotion_to_dict(p) for p in items]), 200


@promotions_bp.route("/active", methods=["GET"])
def list_active_promotions():
    """
    Promotions that can be used right now
    ---
    tags:
      - Promotions
    responses:
      200:
        description: Active promotions inside their validity window
    """
    now = datetime.now()
    stmt = select(Promotion).where(
        Promotion.is_active.is_(True),
        Promotion.starts_at <= now,
        Promotion.expires_at >= now,
    )
    items = [
        p
        for p in db.session.scalars(stmt.order_by(Promotion.expires_at))
        if promotions.is_valid(p, now)
    ]
    return jsonify([promotion_to_dict(p) for p in items]), 200


@promotions_bp.route("", methods=["POST"])
@admin_required
def create_promotion():
    """
    Create a promotion
    ---
    tags:
      - Promotions
    responses:
      201:
        description: Promotion created
      422:
        description: Code already in use
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["name", "code", "type", "value", "starts_at", "expires_at"])
    if _code_taken(str(data["code"]).strip()):
        return jsonify({"error": "A promotion with this code already exists"}), 422

    promotion = Promotion(is_active=True, used_count=0, applicable_days=[], applicable_services=[])
    _apply_fields(promotion, data)

    try:
        db.session.add(promotion)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(promotion_to_dict(promotion)), 201


@promotions_bp.route("/<int:promotion_id>", methods=["GET"])
@admin_required
def get_promotion(promotion_id):
    promotion = db.session.get(Promotion, promotion_id)
    if not promotion:
        return jsonify({"error": "Promotion not found"}), 404
    return jsonify(promotion_to_dict(promotion)), 200


@promotions_bp.route("/<int:promotion_id>", methods=["PUT"])
@admin_required
def update_promotion(promotion_id):
    promotion = db.session.get(Promotion, promotion_id)
    if not promotion:
        return jsonify({"error": "Promotion not found"}), 404

    data = request.get_json(silent=True) or {}
    if data.get("code") and _code_taken(str(data["code"]).strip(), exclude_id=promotion_id):
        return jsonify({"error": "A promotion with this code already exists"}), 422
    _apply_fields(promotion, data)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(promotion_to_dict(promotion)), 200


@promotions_bp.route("/<int:promotion_id>", methods=["DELETE"])
@admin_required
def delete_promotion(promotion_id):
    promotion = db.session.get(Promotion, promotion_id)
    if not promotion:
        return jsonify({"error": "Promotion not found"}), 404

    try:
        db.session.delete(promotion)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Promotion deleted"}), 200


@promotions_bp.route("/validate", methods=["POST"])
def validate_promotion():
    """
    Check a promotion code against a service, date and amount
    ---
    tags:
      - Promotions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [code, service_id, date, amount]
          properties:
            code:
              type: string
            service_id:
              type: integer
            date:
              type: string
            amount:
              type: number
    responses:
      200:
        description: discount_amount and final_amount
      422:
        description: The code is invalid or does not apply
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["code", "service_id", "date", "amount"])
    service_id = parse_int(data["service_id"], "service_id")
    day = parse_date(data["date"])
    amount = parse_decimal(data["amount"], "amount", 0)

    if not db.session.get(Service, service_id):
        return jsonify({"error": "Service not found"}), 404

    promotion = promotions.find_by_code(str(data["code"]).strip())
    if promotion is None:
        return jsonify({"valid": False, "error": "Invalid promotion code"}), 422
    if not promotions.can_apply_to(promotion, service_id, day):
        return (
            jsonify({"valid": False, "error": "The promotion does not apply to this service or date"}),
            422,
        )

    discount = promotions.calculate_discount(promotion, amount)
    if discount <= 0:
        return (
            jsonify({"valid": False, "error": "The amount does not reach the promotion minimum"}),
            422,
        )

    return (
        jsonify(
            {
                "valid": True,
                "promotion": promotion_to_dict(promotion),
                "discount_amount": float(discount),
                "final_amount": float(amount - discount),
            }
        ),
        200,
    )
