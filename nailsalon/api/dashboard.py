from collections import Counter, defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, request, send_file
from sqlalchemy import func, select

from nailsalon.extensions import db
from nailsalon.models import Appointment, Client, Payment, Product, Service
from nailsalon.services import reports
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import appointment_to_dict, payment_to_dict
from nailsalon.utils.validation import ValidationError, parse_date

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")

PERIODS = ("day", "week", "month", "year")
TREND_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}


def period_start(period, now):
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return today
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "year":
        return today.replace(month=1, day=1)
    return today.replace(day=1)


def _count(*criteria):
    return db.session.scalar(select(func.count(Appointment.id)).where(*criteria)) or 0


def _rate(part, total):
    return round(part / total * 100, 2) if total else 0


def appointment_stats(start, end, now):
    in_period = (Appointment.created_at >= start, Appointment.created_at <= end)
    total = _count(*in_period)
    by_status = dict(
        db.session.execute(
            select(Appointment.status, func.count(Appointment.id))
            .where(*in_period)
            .group_by(Appointment.status)
        ).all()
    )
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    completed = by_status.get("completed", 0)
    cancelled = by_status.get("cancelled", 0)
    no_show = by_status.get("no_show", 0)
    return {
        "total": total,
        "confirmed": by_status.get("confirmed", 0),
        "completed": completed,
        "cancelled": cancelled,
        "no_show": no_show,
        "today": _count(
            Appointment.scheduled_at >= today,
            Appointment.scheduled_at < today + timedelta(days=1),
            Appointment.status != "cancelled",
        ),
        "upcoming": _count(
            Appointment.scheduled_at >= now,
            Appointment.scheduled_at <= now + timedelta(days=7),
            Appointment.status != "cancelled",
        ),
        "completion_rate": _rate(completed, total),
        "cancellation_rate": _rate(cancelled + no_show, total),
    }


def revenue_stats(start, end):
    completed = (
        Payment.status == "completed",
        Payment.created_at >= start,
        Payment.created_at <= end,
    )
    total = db.session.scalar(select(func.sum(Payment.amount)).where(*completed)) or 0
    deposits = (
        db.session.scalar(
            select(func.sum(Payment.amount))
            .join(Appointment, Payment.appointment_id == Appointment.id)
            .where(*completed, Appointment.deposit_paid.is_(True))
        )
        or 0
    )
    pending = (
        db.session.scalar(
            select(func.sum(Appointment.deposit_amount)).where(
                Appointment.status == "confirmed", Appointment.deposit_paid.is_(False)
            )
        )
        or 0
    )
    by_method = db.session.execute(
        select(Payment.payment_method, func.sum(Payment.amount))
        .where(*completed)
        .group_by(Payment.payment_method)
    ).all()
    average = db.session.scalar(
        select(func.avg(Appointment.total_price)).where(
            Appointment.status == "completed",
            Appointment.created_at >= start,
            Appointment.created_at <= end,
        )
    )
    return {
        "total_revenue": float(total),
        "deposit_revenue": float(deposits),
        "pending_revenue": float(pending),
        "revenue_by_method": [
            {"payment_method": method, "total": float(amount or 0)} for method, amount in by_method
        ],
        "avg_revenue_per_appointment": round(float(average or 0), 2),
    }


def client_stats(start, end):
    total = db.session.scalar(select(func.count(Client.id))) or 0
    new = (
        db.session.scalar(
            select(func.count(Client.id)).where(Client.created_at >= start, Client.created_at <= end)
        )
        or 0
    )
    per_client = Counter(
        db.session.scalars(
            select(Appointment.client_id).where(
                Appointment.created_at >= start, Appointment.created_at <= end
            )
        ).all()
    )
    earlier = set(
        db.session.scalars(
            select(Appointment.client_id).where(Appointment.created_at < start).distinct()
        ).all()
    )
    returning = len(earlier & set(per_client))
    return {
        "total_clients": total,
        "new_clients": new,
        "active_clients": len(per_client),
        "frequent_clients": sum(1 for count in per_client.values() if count > 3),
        "retention_rate": _rate(returning, total),
    }


def service_stats(start, end):
    in_period = (Appointment.created_at >= start, Appointment.created_at <= end)
    popular = db.session.execute(
        select(Service.id, Service.name, func.count(Appointment.id).label("count"))
        .join(Appointment, Appointment.service_id == Service.id)
        .where(*in_period)
        .group_by(Service.id, Service.name)
        .order_by(func.count(Appointment.id).desc())
        .limit(5)
    ).all()
    revenue = db.session.execute(
        select(Service.id, Service.name, func.sum(Appointment.total_price).label("revenue"))
        .join(Appointment, Appointment.service_id == Service.id)
        .where(*in_period, Appointment.status == "completed")
        .group_by(Service.id, Service.name)
        .order_by(func.sum(Appointment.total_price).desc())
    ).all()
    return {
        "popular_services": [
            {"service_id": sid, "name": name, "count": count} for sid, name, count in popular
        ],
        "revenue_by_service": [
            {"service_id": sid, "name": name, "revenue": float(total or 0)}
            for sid, name, total in revenue
        ],
    }


def inventory_stats():
    active = Product.is_active.is_(True)
    value = db.session.scalar(
        select(func.sum(Product.stock_quantity * Product.cost_price)).where(active)
    )
    return {
        "total_products": db.session.scalar(select(func.count(Product.id)).where(active)) or 0,
        "low_stock_products": db.session.scalar(
            select(func.count(Product.id)).where(
                active, Product.stock_quantity <= Product.min_stock_level
            )
        )
        or 0,
        "out_of_stock_products": db.session.scalar(
            select(func.count(Product.id)).where(active, Product.stock_quantity <= 0)
        )
        or 0,
        "total_inventory_value": round(float(value or 0), 2),
    }


def daily_trends(period, now):
    days = TREND_DAYS[period]
    first = (now - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)

    appointments = Counter(
        created.date()
        for created in db.session.scalars(
            select(Appointment.created_at).where(Appointment.created_at >= first)
        )
        if created is not None
    )
    revenue = defaultdict(float)
    for created, amount in db.session.execute(
        select(Payment.created_at, Payment.amount).where(
            Payment.status == "completed", Payment.created_at >= first
        )
    ):
        if created is not None:
            revenue[created.date()] += float(amount)

    trends = []
    for offset in range(days):
        day = (first + timedelta(days=offset)).date()
        trends.append(
            {
                "date": day.isoformat(),
                "appointments": appointments.get(day, 0),
                "revenue": round(revenue.get(day, 0.0), 2),
            }
        )
    return trends


@dashboard_bp.route("/stats", methods=["GET"])
@admin_required
def get_stats():
    """
    Business statistics for a period
    ---
    tags:
      - Dashboard
    parameters:
      - in: query
        name: period
        type: string
        enum: [day, week, month, year]
        default: month
    responses:
      200:
        description: Appointment, revenue, client, service and inventory stats plus daily trends
    """
    period = request.args.get("period", "month")
    if period not in PERIODS:
        raise ValidationError(f"period must be one of {', '.join(PERIODS)}")

    now = datetime.now()
    start = period_start(period, now)
    return (
        jsonify(
            {
                "period": period,
                "start_date": start.isoformat(),
                "end_date": now.isoformat(),
                "appointments": appointment_stats(start, now, now),
                "revenue": revenue_stats(start, now),
                "clients": client_stats(start, now),
                "services": service_stats(start, now),
                "inventory": inventory_stats(),
                "trends": daily_trends(period, now),
            }
        ),
        200,
    )


@dashboard_bp.route("/upcoming", methods=["GET"])
@admin_required
def get_upcoming():
    now = datetime.now()
    appointments = db.session.scalars(
        select(Appointment)
        .where(
            Appointment.scheduled_at >= now,
            Appointment.scheduled_at <= now + timedelta(days=7),
            Appointment.status != "cancelled",
        )
        .order_by(Appointment.scheduled_at)
        .limit(10)
    ).all()
    return jsonify([appointment_to_dict(a) for a in appointments]), 200


@dashboard_bp.route("/recent-activity", methods=["GET"])
@admin_required
def get_recent_activity():
    appointments = db.session.scalars(
        select(Appointment).order_by(Appointment.created_at.desc(), Appointment.id.desc()).limit(5)
    ).all()
    payments = db.session.scalars(
        select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(5)
    ).all()
    return (
        jsonify(
            {
                "appointments": [appointment_to_dict(a) for a in appointments],
                "payments": [payment_to_dict(p) for p in payments],
            }
        ),
        200,
    )


@dashboard_bp.route("/report", methods=["POST"])
@admin_required
def generate_report():
    """
    Generates an Excel file combining the selected sections.
    ---
    tags:
      - Dashboard
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            appointments: {type: boolean}
            payments: {type: boolean}
            inventory: {type: boolean}
            start_date: {type: string}
            end_date: {type: string}
    produces:
      - application/vnd.openxmlformats-officedocument.spreadsheetml.sheet
    responses:
      200:
        description: xlsx workbook
      400:
        description: No section selected or bad dates
    """
    selected = request.get_json(silent=True) or {}
    start = end = None
    if selected.get("start_date"):
        day = parse_date(selected["start_date"], "start_date")
        start = datetime.combine(day, datetime.min.time())
    if selected.get("end_date"):
        day = parse_date(selected["end_date"], "end_date")
        end = datetime.combine(day, datetime.min.time()) + timedelta(days=1)
    if start and end and start >= end:
        raise ValidationError("start_date must not be after end_date")

    frames = {}
    if selected.get("appointments"):
        frames["Appointments"] = reports.appointments_frame(start, end)
    if selected.get("payments"):
        frames["Payments"] = reports.payments_frame(start, end)
    if selected.get("inventory"):
        frames["Inventory"] = reports.inventory_frame()
    if not frames:
        raise ValidationError("Select at least one of appointments, payments or inventory")

    output = reports.build_workbook(frames)
    current_app.logger.info("Generated report with sheets %s", ", ".join(frames))
    return send_file(
        output,
        as_attachment=True,
        download_name=reports.report_filename("campinails_report"),
        mimetype=reports.XLSX_MIMETYPE,
    )
