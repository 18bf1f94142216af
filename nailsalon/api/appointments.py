# Book, reschedule, cancel and pay for appointments
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import (
    APPOINTMENT_STATUSES,
    Appointment,
    AppointmentPromotion,
    Client,
    Employee,
    Payment,
    Service,
)
from nailsalon.services import promotions
from nailsalon.services.notification_service import NotificationService, notify_safely
from nailsalon.services.payment_service import ONLINE_PROVIDERS, PaymentService
from nailsalon.services.scheduling import (
    BookingError,
    BookingRules,
    check_business_hours,
    check_can_reschedule,
    check_employee_can_serve,
    check_lead_time,
    check_no_overlap,
    compute_deposit,
    find_bookable_slot,
    materialize_slots,
    release_slots,
    reserve_slot,
    round_down,
)
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import appointment_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_date,
    parse_datetime,
    parse_int,
    require_fields,
    validate_email,
)

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")

DEPOSIT_METHODS = ("mercadopago", "stripe", "transfer", "cash")


def _find_or_create_client(name, whatsapp, email):
    client = db.session.scalar(select(Client).where(Client.whatsapp == whatsapp))
    if client is None:
        client = Client(name=name, whatsapp=whatsapp, email=email, is_active=True)
        db.session.add(client)
        db.session.flush()
    elif email and not client.email:
        client.email = email
    return client


def _apply_promotion(code, service, start, amount):
    promotion = promotions.find_by_code(code)
    if promotion is None:
        raise BookingError("Invalid promotion code")
    if not promotions.can_apply_to(promotion, service.id, start.date()):
        raise BookingError("The promotion cannot be applied to this service or date")
    discount = promotions.calculate_discount(promotion, amount)
    if discount <= 0:
        raise BookingError("The promotion does not apply to this amount")
    return promotion, discount


def _payment_response(appointment, payment, result, status_code=201):
    return (
        jsonify(
            {
                "appointment": appointment_to_dict(appointment),
                "payment_url": result.get("payment_url") if result else None,
                "payment_id": payment.id if payment else None,
                "requires_payment": payment is not None,
            }
        ),
        status_code,
    )


@appointments_bp.route("", methods=["GET"])
@admin_required
def list_appointments():
    """
    List appointments
    ---
    tags:
      - Appointments
    parameters:
      - in: query
        name: date
        type: string
        description: A day (YYYY-MM-DD) or an inclusive range "start,end"
      - {in: query, name: status, type: string}
      - {in: query, name: client_id, type: integer}
      - {in: query, name: employee_id, type: integer}
      - {in: query, name: service_id, type: integer}
    responses:
      200:
        description: Appointments ordered by scheduled_at
    """
    args = request.args
    stmt = select(Appointment)

    if args.get("date"):
        if "," in args["date"]:
            first, last = args["date"].split(",", 1)
            start_day = parse_date(first.strip(), "date")
            end_day = parse_date(last.strip(), "date")
        else:
            start_day = end_day = parse_date(args["date"])
        stmt = stmt.where(
            Appointment.scheduled_at >= datetime.combine(start_day, datetime.min.time()),
            Appointment.scheduled_at
            < datetime.combine(end_day + timedelta(days=1), datetime.min.time()),
        )
    if args.get("status"):
        stmt = stmt.where(Appointment.status == args["status"])
    for field in ("client_id", "employee_id", "service_id"):
        if args.get(field):
            stmt = stmt.where(getattr(Appointment, field) == parse_int(args[field], field))

    appointments = db.session.scalars(stmt.order_by(Appointment.scheduled_at)).all()
    return jsonify([appointment_to_dict(a) for a in appointments]), 200


@appointments_bp.route("", methods=["POST"])
def create_appointment():
    """
    Book an appointment
    ---
    summary: Public booking endpoint
    description: Finds or creates the client by WhatsApp number, checks the
        lead time, business hours, employee eligibility and overlaps, reserves
        the matching time slot and starts the deposit checkout when the
        service requires one.
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [service_id, scheduled_at, name, whatsapp]
          properties:
            service_id:
              type: integer
            employee_id:
              type: integer
            scheduled_at:
              type: string
              example: "2030-03-14 10:00"
            name:
              type: string
            whatsapp:
              type: string
            email:
              type: string
            special_requests:
              type: string
            reference_photo:
              type: string
            promotion_code:
              type: string
    responses:
      201:
        description: Appointment booked; payment_url is set when a checkout was started
      400:
        description: Missing or malformed fields
      404:
        description: Service or employee not found
      422:
        description: The requested time cannot be booked
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["service_id", "scheduled_at", "name", "whatsapp"])

    service = db.session.get(Service, parse_int(data["service_id"], "service_id"))
    if not service:
        return jsonify({"error": "Service not found"}), 404

    employee = None
    if data.get("employee_id") not in (None, ""):
        employee = db.session.get(Employee, parse_int(data["employee_id"], "employee_id"))
        if not employee:
            return jsonify({"error": "Employee not found"}), 404

    start = parse_datetime(data["scheduled_at"]).replace(second=0, microsecond=0)
    end = start + timedelta(minutes=service.duration_minutes)
    email = validate_email(data["email"]) if data.get("email") else None
    whatsapp = str(data["whatsapp"]).strip()
    rules = BookingRules.from_config(current_app.config)

    if not service.is_active:
        raise BookingError("This service is not currently offered")
    check_lead_time(start, datetime.now(), rules)
    check_business_hours(start, end, rules)
    if employee:
        check_employee_can_serve(employee, service)

    try:
        client = _find_or_create_client(data["name"], whatsapp, email)

        materialize_slots(service, start.date(), employee.id if employee else None)
        slot = find_bookable_slot(service.id, employee.id if employee else None, start)
        if slot is None:
            raise BookingError("The selected time is not available, please choose another one")
        employee_id = employee.id if employee else slot.employee_id

        check_no_overlap(start, end, employee_id)

        total_price = service.price
        promotion = discount = None
        if data.get("promotion_code"):
            promotion, discount = _apply_promotion(
                data["promotion_code"], service, start, service.price
            )
            total_price = service.price - discount

        deposit = compute_deposit(total_price, service)
        appointment = Appointment(
            service_id=service.id,
            client_id=client.id,
            employee_id=employee_id,
            scheduled_at=start,
            ends_at=end,
            status="pending_deposit" if deposit > 0 else "confirmed",
            total_price=total_price,
            deposit_amount=deposit,
            deposit_paid=False,
            reschedule_count=0,
            special_requests=data.get("special_requests"),
            reference_photo=data.get("reference_photo"),
        )
        db.session.add(appointment)
        db.session.flush()
        reserve_slot(slot, appointment)

        if promotion is not None:
            db.session.add(
                AppointmentPromotion(
                    appointment_id=appointment.id,
                    promotion_id=promotion.id,
                    discount_amount=discount,
                )
            )
            promotion.used_count = (promotion.used_count or 0) + 1

        payment = result = None
        if deposit > 0:
            provider = current_app.config.get("DEFAULT_PAYMENT_PROVIDER")
            payment = Payment(
                appointment_id=appointment.id,
                amount=deposit,
                currency=current_app.config.get("PAYMENT_CURRENCY", "ARS"),
                payment_method=provider or "pending",
                payment_provider=provider,
                status="pending",
                payment_metadata={"service_name": service.name, "client_name": client.name},
            )
            db.session.add(payment)
            db.session.flush()

            if provider:
                result = PaymentService.from_app().create_checkout(payment)
                if not result.get("success"):
                    db.session.rollback()
                    current_app.logger.warning(
                        "Deposit checkout via %s failed: %s", provider, result.get("error")
                    )
                    return (
                        jsonify({"error": f"Could not start the payment: {result.get('error')}"}),
                        422,
                    )
                payment.status = "processing"
                payment.provider_payment_id = result.get("provider_payment_id")

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error("Booking failed: %s", e)
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info(
        "Booked appointment %s: service %s, employee %s, %s, deposit %s",
        appointment.id,
        service.id,
        appointment.employee_id,
        start,
        deposit,
    )
    return _payment_response(appointment, payment, result)


@appointments_bp.route("/<int:appointment_id>", methods=["GET"])
@admin_required
def get_appointment(appointment_id):
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return jsonify({"error": "Appointment not found"}), 404
    return jsonify(appointment_to_dict(appointment)), 200


@appointments_bp.route("/<int:appointment_id>", methods=["PUT"])
@admin_required
def update_appointment(appointment_id):
    """
    Update or reschedule an appointment
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            scheduled_at:
              type: string
              description: New start; rounded down to the half hour
            status:
              type: string
              enum: [pending_deposit, confirmed, rescheduled, cancelled, no_show, completed]
            deposit_paid:
              type: boolean
            special_requests:
              type: string
            reference_photo:
              type: string
            admin_notes:
              type: string
    responses:
      200:
        description: Updated appointment
      404:
        description: Appointment not found
      422:
        description: Reschedule limit reached or the new time cannot be booked
    """
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return jsonify({"error": "Appointment not found"}), 404

    data = request.get_json(silent=True) or {}
    if data.get("status") is not None and data["status"] not in APPOINTMENT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(APPOINTMENT_STATUSES)}")

    rules = BookingRules.from_config(current_app.config)
    previous_status = appointment.status

    try:
        if data.get("scheduled_at"):
            check_can_reschedule(appointment, rules)
            start = round_down(parse_datetime(data["scheduled_at"]), rules.round_minutes)
            end = start + timedelta(minutes=appointment.service.duration_minutes)
            check_business_hours(start, end, rules)
            check_lead_time(start, datetime.now(), rules)
            check_no_overlap(start, end, appointment.employee_id, exclude_id=appointment.id)

            old_start = appointment.scheduled_at
            release_slots(appointment)
            appointment.scheduled_at = start
            appointment.ends_at = end
            db.session.flush()

            materialize_slots(appointment.service, start.date(), appointment.employee_id)
            slot = find_bookable_slot(appointment.service_id, appointment.employee_id, start)
            if slot is not None:
                reserve_slot(slot, appointment)

            appointment.reschedule_count += 1
            appointment.status = "rescheduled"
            current_app.logger.info(
                "Rescheduled appointment %s from %s to %s (%d/%d)",
                appointment.id,
                old_start,
                start,
                appointment.reschedule_count,
                rules.max_reschedules,
            )

        if data.get("status") is not None:
            appointment.status = data["status"]

        if data.get("deposit_paid") is not None:
            paid = parse_bool(data["deposit_paid"])
            appointment.deposit_paid = paid
            appointment.deposit_paid_at = datetime.now() if paid else None
            if paid:
                appointment.status = "confirmed"

        for field in ("special_requests", "reference_photo", "admin_notes"):
            if field in data:
                setattr(appointment, field, data[field])

        if appointment.status == "cancelled" and previous_status != "cancelled":
            release_slots(appointment)
        elif (
            previous_status == "cancelled"
            and appointment.status != "cancelled"
            and not data.get("scheduled_at")
        ):
            # Cancelled appointments gave their time away; taking it back needs it free
            check_no_overlap(
                appointment.scheduled_at,
                appointment.ends_at,
                appointment.employee_id,
                exclude_id=appointment.id,
            )
            materialize_slots(
                appointment.service, appointment.scheduled_at.date(), appointment.employee_id
            )
            slot = find_bookable_slot(
                appointment.service_id, appointment.employee_id, appointment.scheduled_at
            )
            if slot is not None:
                reserve_slot(slot, appointment)
            current_app.logger.info(
                "Reactivated appointment %s as %s", appointment.id, appointment.status
            )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    if appointment.status != previous_status:
        notifier = None
        if appointment.status == "confirmed":
            notifier = NotificationService.from_app().send_appointment_confirmation
        elif appointment.status == "cancelled":
            notifier = NotificationService.from_app().send_appointment_cancellation
        if notifier is not None:
            notify_safely(notifier, appointment)
            db.session.commit()

    return jsonify(appointment_to_dict(appointment)), 200


@appointments_bp.route("/<int:appointment_id>", methods=["DELETE"])
@admin_required
def delete_appointment(appointment_id):
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return jsonify({"error": "Appointment not found"}), 404

    try:
        release_slots(appointment)
        db.session.delete(appointment)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    current_app.logger.info("Deleted appointment %s", appointment_id)
    return jsonify({"message": "Appointment deleted"}), 200


@appointments_bp.route("/<int:appointment_id>/payment", methods=["POST"])
def pay_deposit(appointment_id):
    """
    Pay an appointment's deposit
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [payment_method]
          properties:
            payment_method:
              type: string
              enum: [mercadopago, stripe, transfer, cash]
    responses:
      201:
        description: Checkout started or manual payment registered
      422:
        description: Deposit already paid or the checkout failed
    """
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return jsonify({"error": "Appointment not found"}), 404
    if appointment.deposit_paid:
        return jsonify({"error": "The deposit for this appointment is already paid"}), 422
    if not appointment.deposit_amount or appointment.deposit_amount <= 0:
        return jsonify({"error": "This appointment does not require a deposit"}), 422

    data = request.get_json(silent=True) or {}
    method = data.get("payment_method")
    if method not in DEPOSIT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(DEPOSIT_METHODS)}")
    provider = method if method in ONLINE_PROVIDERS else "manual"

    try:
        payment = db.session.scalar(
            select(Payment)
            .where(Payment.appointment_id == appointment.id, Payment.status == "pending")
            .order_by(Payment.id.desc())
            .limit(1)
        )
        if payment is None:
            payment = Payment(
                appointment_id=appointment.id,
                amount=appointment.deposit_amount,
                currency=current_app.config.get("PAYMENT_CURRENCY", "ARS"),
                payment_metadata={
                    "service_name": appointment.service.name,
                    "client_name": appointment.client.name,
                },
            )
            db.session.add(payment)
        payment.payment_method = method
        payment.payment_provider = provider
        payment.status = "pending"
        db.session.flush()

        if provider in ONLINE_PROVIDERS:
            result = PaymentService.from_app().create_checkout(payment)
            if not result.get("success"):
                db.session.rollback()
                current_app.logger.warning(
                    "Checkout for appointment %s via %s failed: %s",
                    appointment_id,
                    provider,
                    result.get("error"),
                )
                return (
                    jsonify({"error": f"Could not start the payment: {result.get('error')}"}),
                    422,
                )
            payment.status = "processing"
            payment.provider_payment_id = result.get("provider_payment_id")
            db.session.commit()
            return _payment_response(appointment, payment, result)

        payment.status = "processing"
        if method == "transfer":
            appointment.admin_notes = "Bank transfer pending confirmation."
            message = "Transfer registered, pending confirmation."
        else:
            appointment.admin_notes = "Client will pay the deposit in cash at the salon."
            message = "Cash payment registered, it will be confirmed at the salon."
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return (
        jsonify(
            {
                "message": message,
                "appointment": appointment_to_dict(appointment),
                "payment_id": payment.id,
                "requires_payment": False,
            }
        ),
        201,
    )
