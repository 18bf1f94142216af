from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import PAYMENT_STATUSES, Appointment, Payment
from nailsalon.services.notification_service import NotificationService, notify_safely
from nailsalon.services.payment_service import (
    ONLINE_PROVIDERS,
    PaymentService,
    complete_payment,
)
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import appointment_to_dict, payment_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_decimal,
    parse_int,
    require_fields,
)

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

PAYMENT_METHODS = ("card", "transfer", "cash", "mercadopago", "stripe")
PER_PAGE = 20


@payments_bp.route("", methods=["GET"])
@admin_required
def list_payments():
    """
    Paginated payments, newest first
    ---
    tags:
      - Payments
    parameters:
      - {in: query, name: page, type: integer}
      - {in: query, name: status, type: string}
      - {in: query, name: payment_method, type: string}
      - {in: query, name: appointment_id, type: integer}
    responses:
      200:
        description: One page of payments
    """
    args = request.args
    stmt = select(Payment)
    if args.get("status"):
        stmt = stmt.where(Payment.status == args["status"])
    if args.get("payment_method"):
        stmt = stmt.where(Payment.payment_method == args["payment_method"])
    if args.get("appointment_id"):
        stmt = stmt.where(
            Payment.appointment_id == parse_int(args["appointment_id"], "appointment_id")
        )

    page = parse_int(args.get("page", 1), "page", 1)
    pagination = db.paginate(
        stmt.order_by(Payment.created_at.desc(), Payment.id.desc()),
        page=page,
        per_page=PER_PAGE,
        error_out=False,
    )
    return (
        jsonify(
            {
                "data": [payment_to_dict(p) for p in pagination.items],
                "current_page": pagination.page,
                "per_page": pagination.per_page,
                "total": pagination.total,
                "last_page": pagination.pages,
            }
        ),
        200,
    )


@payments_bp.route("", methods=["POST"])
@admin_required
def create_payment():
    """
    Register a payment for an appointment
    ---
    tags:
      - Payments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [appointment_id, amount, payment_method]
          properties:
            appointment_id:
              type: integer
            amount:
              type: number
            payment_method:
              type: string
              enum: [card, transfer, cash, mercadopago, stripe]
            payment_provider:
              type: string
            metadata:
              type: object
    responses:
      201:
        description: Payment registered; payment_url is set for online checkouts
      422:
        description: The online checkout failed
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["appointment_id", "amount", "payment_method"])

    appointment = db.session.get(
        Appointment, parse_int(data["appointment_id"], "appointment_id")
    )
    if not appointment:
        return jsonify({"error": "Appointment not found"}), 404

    amount = parse_decimal(data["amount"], "amount", 0)
    method = data["payment_method"]
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    provider = data.get("payment_provider")
    if method in ONLINE_PROVIDERS:
        provider = method
    elif not provider:
        provider = "manual"

    payment = Payment(
        appointment_id=appointment.id,
        amount=amount,
        currency=current_app.config.get("PAYMENT_CURRENCY", "ARS"),
        payment_method=method,
        payment_provider=provider,
        status="pending",
        payment_metadata=metadata,
    )

    result = None
    try:
        db.session.add(payment)
        db.session.flush()

        if provider in ONLINE_PROVIDERS:
            result = PaymentService.from_app().create_checkout(payment)
            if not result.get("success"):
                payment.status = "failed"
                db.session.commit()
                current_app.logger.warning(
                    "Payment %s checkout failed: %s", payment.id, result.get("error")
                )
                return (
                    jsonify(
                        {
                            "error": f"Could not start the payment: {result.get('error')}",
                            "payment": payment_to_dict(payment),
                        }
                    ),
                    422,
                )
            payment.status = "processing"
            payment.provider_payment_id = result.get("provider_payment_id")
        elif method == "cash":
            complete_payment(payment)

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    response = payment_to_dict(payment)
    response["payment_url"] = result.get("payment_url") if result else None
    return jsonify(response), 201


@payments_bp.route("/<int:payment_id>", methods=["GET"])
@admin_required
def get_payment(payment_id):
    payment = db.session.get(Payment, payment_id)
    if not payment:
        return jsonify({"error": "Payment not found"}), 404
    data = payment_to_dict(payment)
    data["appointment"] = appointment_to_dict(payment.appointment)
    return jsonify(data), 200


@payments_bp.route("/<int:payment_id>/confirm", methods=["POST"])
@admin_required
def confirm_payment(payment_id):
    """
    Confirm a pending or processing payment
    ---
    tags:
      - Payments
    responses:
      200:
        description: Payment completed and appointment confirmed
      422:
        description: The payment is not pending or processing
    """
    payment = db.session.get(Payment, payment_id)
    if not payment:
        return jsonify({"error": "Payment not found"}), 404
    if payment.status not in ("pending", "processing"):
        return jsonify({"error": f"A {payment.status} payment cannot be confirmed"}), 422

    try:
        complete_payment(payment)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    notify_safely(NotificationService.from_app().send_payment_confirmation, payment)
    db.session.commit()
    return jsonify(payment_to_dict(payment)), 200


@payments_bp.route("/<int:payment_id>/refund", methods=["POST"])
@admin_required
def refund_payment(payment_id):
    """
    Refund a completed payment
    ---
    tags:
      - Payments
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            amount:
              type: number
              description: Defaults to the full payment amount
            reason:
              type: string
    responses:
      200:
        description: Payment refunded
      422:
        description: Payment not completed, amount too high or the provider refused
    """
    payment = db.session.get(Payment, payment_id)
    if not payment:
        return jsonify({"error": "Payment not found"}), 404
    if payment.status != "completed":
        return jsonify({"error": "Only completed payments can be refunded"}), 422

    data = request.get_json(silent=True) or {}
    if data.get("amount") is not None:
        amount = parse_decimal(data["amount"], "amount", 0)
        if amount > payment.amount:
            return jsonify({"error": "Refund amount exceeds the payment amount"}), 422
    else:
        amount = payment.amount
    reason = data.get("reason")

    result = PaymentService.from_app().refund(payment, amount, reason)
    if not result.get("success"):
        return jsonify({"error": f"Refund failed: {result.get('error')}"}), 422

    try:
        payment.status = "refunded"
        payment.refunded_at = datetime.now()
        payment.refund_amount = amount
        if reason:
            payment.payment_metadata = {**(payment.payment_metadata or {}), "refund_reason": reason}
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info("Refunded %s on payment %s", amount, payment.id)
    return jsonify(payment_to_dict(payment)), 200


@payments_bp.route("/webhook", methods=["POST"])
def payment_webhook():
    """
    Provider webhook
    ---
    tags:
      - Payments
    parameters:
      - in: header
        name: X-Payment-Provider
        type: string
        required: true
        enum: [mercadopago, stripe]
    responses:
      200:
        description: Event processed or ignored
      400:
        description: Unknown provider or malformed event
    """
    provider = (request.headers.get("X-Payment-Provider") or "").lower()
    if provider not in ONLINE_PROVIDERS:
        return jsonify({"error": "Unknown payment provider"}), 400

    data = request.get_json(silent=True) or {}
    try:
        result = PaymentService.from_app().handle_webhook(provider, data)
        if not result.get("success"):
            db.session.rollback()
            return jsonify({"error": result.get("error")}), 400
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    payment = result.get("payment")
    if payment is not None:
        notify_safely(NotificationService.from_app().send_payment_confirmation, payment)
        db.session.commit()
    return jsonify({"status": "ok"}), 200
