from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import (
    NOTIFICATION_STATUSES,
    NOTIFICATION_TYPES,
    RECIPIENT_TYPES,
    Notification,
)
from nailsalon.services.notification_service import NotificationService
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import notification_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_datetime,
    parse_int,
    require_fields,
)

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")

PER_PAGE = 20


def _parse_common(data):
    """Validate the fields shared by single and bulk creation."""
    if data["type"] not in NOTIFICATION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(NOTIFICATION_TYPES)}")
    if data["recipient_type"] not in RECIPIENT_TYPES:
        raise ValidationError(f"recipient_type must be one of {', '.join(RECIPIENT_TYPES)}")

    scheduled_for = None
    if data.get("scheduled_for"):
        scheduled_for = parse_datetime(data["scheduled_for"], "scheduled_for")
        if scheduled_for <= datetime.now():
            raise ValidationError("scheduled_for must be in the future")

    extra = data.get("data") or {}
    if not isinstance(extra, dict):
        raise ValidationError("data must be an object")

    return {
        "type": data["type"],
        "recipient_type": data["recipient_type"],
        "title": data["title"],
        "message": data["message"],
        "data": extra,
        "scheduled_for": scheduled_for,
    }


@notifications_bp.route("", methods=["GET"])
@admin_required
def list_notifications():
    """
    Paginated notifications, newest first
    ---
    tags:
      - Notifications
    parameters:
      - {in: query, name: page, type: integer}
      - {in: query, name: type, type: string}
      - {in: query, name: status, type: string}
      - {in: query, name: recipient_type, type: string}
    responses:
      200:
        description: One page of notifications
    """
    args = request.args
    stmt = select(Notification)
    if args.get("type"):
        stmt = stmt.where(Notification.type == args["type"])
    if args.get("status"):
        if args["status"] not in NOTIFICATION_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(NOTIFICATION_STATUSES)}")
        stmt = stmt.where(Notification.status == args["status"])
    if args.get("recipient_type"):
        stmt = stmt.where(Notification.recipient_type == args["recipient_type"])

    page = parse_int(args.get("page", 1), "page", 1)
    pagination = db.paginate(
        stmt.order_by(Notification.created_at.desc(), Notification.id.desc()),
        page=page,
        per_page=PER_PAGE,
        error_out=False,
    )
    return (
        jsonify(
            {
                "data": [notification_to_dict(n) for n in pagination.items],
                "current_page": pagination.page,
                "per_page": pagination.per_page,
                "total": pagination.total,
                "last_page": pagination.pages,
            }
        ),
        200,
    )


@notifications_bp.route("", methods=["POST"])
@admin_required
def create_notification():
    """
    Create a notification and send it unless it is scheduled
    ---
    tags:
      - Notifications
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [type, recipient_type, recipient_id, title, message]
          properties:
            type:
              type: string
              enum: [whatsapp, email, sms, push]
            recipient_type:
              type: string
              enum: [client, employee, admin]
            recipient_id:
              type: integer
            title:
              type: string
            message:
              type: string
            scheduled_for:
              type: string
            data:
              type: object
    responses:
      201:
        description: Notification created, with its delivery status
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["type", "recipient_type", "recipient_id", "title", "message"])
    fields = _parse_common(data)
    fields["recipient_id"] = parse_int(data["recipient_id"], "recipient_id", 1)

    try:
        notification = Notification(status="pending", **fields)
        db.session.add(notification)
        db.session.flush()
        if notification.scheduled_for is None:
            NotificationService.from_app().send(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(notification_to_dict(notification)), 201


@notifications_bp.route("/bulk", methods=["POST"])
@admin_required
def create_bulk_notifications():
    """
    Send the same notification to several recipients
    ---
    tags:
      - Notifications
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [type, recipient_type, recipient_ids, title, message]
          properties:
            recipient_ids:
              type: array
              items:
                type: integer
    responses:
      201:
        description: Notifications created, with sent and failed counts
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["type", "recipient_type", "recipient_ids", "title", "message"])
    ids = data["recipient_ids"]
    if not isinstance(ids, list) or not ids:
        raise ValidationError("recipient_ids must be a non-empty list")
    recipient_ids = list(dict.fromkeys(parse_int(i, "recipient_ids", 1) for i in ids))
    fields = _parse_common(data)

    service = NotificationService.from_app()
    created = []
    try:
        for recipient_id in recipient_ids:
            notification = Notification(status="pending", recipient_id=recipient_id, **fields)
            db.session.add(notification)
            db.session.flush()
            if notification.scheduled_for is None:
                service.send(notification)
            created.append(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info("Bulk notification to %d %ss", len(created), fields["recipient_type"])
    return (
        jsonify(
            {
                "notifications": [notification_to_dict(n) for n in created],
                "total": len(created),
                "sent": sum(1 for n in created if n.status == "sent"),
                "failed": sum(1 for n in created if n.status == "failed"),
            }
        ),
        201,
    )


@notifications_bp.route("/<int:notification_id>", methods=["GET"])
@admin_required
def get_notification(notification_id):
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return jsonify({"error": "Notification not found"}), 404
    return jsonify(notification_to_dict(notification)), 200


@notifications_bp.route("/<int:notification_id>/read", methods=["PATCH"])
@admin_required
def mark_as_read(notification_id):
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return jsonify({"error": "Notification not found"}), 404

    try:
        if notification.read_at is None:
            notification.read_at = datetime.now()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(notification_to_dict(notification)), 200


@notifications_bp.route("/<int:notification_id>/resend", methods=["POST"])
@admin_required
def resend_notification(notification_id):
    """
    Retry a notification that has not been sent
    ---
    tags:
      - Notifications
    responses:
      200:
        description: Delivery attempted, see status
      422:
        description: The notification was already sent
    """
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return jsonify({"error": "Notification not found"}), 404
    if notification.status == "sent":
        return jsonify({"error": "The notification was already sent"}), 422

    try:
        NotificationService.from_app().send(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(notification_to_dict(notification)), 200
