# Excel exports built with pandas + xlsxwriter
from datetime import datetime
from io import BytesIO

import pandas as pd
from sqlalchemy import select

from nailsalon.extensions import db
from nailsalon.models import Appointment, Payment, Product
from nailsalon.services.inventory import stock_report_rows

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def appointments_frame(start=None, end=None):
    stmt = select(Appointment).order_by(Appointment.scheduled_at)
    if start is not None:
        stmt = stmt.where(Appointment.scheduled_at >= start)
    if end is not None:
        stmt = stmt.where(Appointment.scheduled_at < end)
    rows = [
        (
            a.id,
            a.scheduled_at,
            a.client.name if a.client else None,
            a.service.name if a.service else None,
            a.employee.name if a.employee else None,
            a.status,
            float(a.total_price),
            float(a.deposit_amount),
            a.deposit_paid,
        )
        for a in db.session.scalars(stmt)
    ]
    return pd.DataFrame(
        rows,
        columns=[
            "Appointment ID",
            "Scheduled At",
            "Client",
            "Service",
            "Employee",
            "Status",
            "Total Price",
            "Deposit",
            "Deposit Paid",
        ],
    )


def payments_frame(start=None, end=None):
    stmt = select(Payment).order_by(Payment.created_at)
    if start is not None:
        stmt = stmt.where(Payment.created_at >= start)
    if end is not None:
        stmt = stmt.where(Payment.created_at < end)
    rows = [
        (
            p.id,
            p.appointment_id,
            float(p.amount),
            p.currency,
            p.payment_method,
            p.payment_provider,
            p.status,
            p.paid_at,
            float(p.refund_amount) if p.refund_amount is not None else None,
        )
        for p in db.session.scalars(stmt)
    ]
    return pd.DataFrame(
        rows,
        columns=[
            "Payment ID",
            "Appointment ID",
            "Amount",
            "Currency",
            "Method",
            "Provider",
            "Status",
            "Paid At",
            "Refunded",
        ],
    )


def inventory_frame(category=None):
    stmt = select(Product).order_by(Product.category, Product.name)
    if category:
        stmt = stmt.where(Product.category == category)
    return pd.DataFrame(stock_report_rows(db.session.scalars(stmt).all()))


def build_workbook(frames):
    """Write ``{sheet_name: DataFrame}`` into an in-memory xlsx file."""
    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        for sheet_name, frame in frames.items():
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
    output.seek(0)
    return output


def report_filename(prefix):
    return f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
