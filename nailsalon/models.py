from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

APPOINTMENT_STATUSES = (
    "pending_deposit",
    "confirmed",
    "rescheduled",
    "cancelled",
    "no_show",
    "completed",
)
SLOT_STATUSES = ("available", "reserved", "cancelled", "blocked")
PAYMENT_STATUSES = (
    "pending",
    "processing",
    "completed",
    "failed",
    "cancelled",
    "refunded",
)
NOTIFICATION_TYPES = ("whatsapp", "email", "sms", "push")
NOTIFICATION_STATUSES = ("pending", "sent", "failed", "cancelled")
RECIPIENT_TYPES = ("client", "employee", "admin")
REMINDER_TYPES = ("confirmation", "reminder_24h", "reminder_2h", "follow_up")


class TimestampMixin:
    created_at = mapped_column(
        DateTime, nullable=False, default=datetime.now, server_default=func.now()
    )
    updated_at = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.now,
        server_default=func.now(),
        onupdate=datetime.now,
    )


employee_service = Table(
    "employee_service",
    metadata,
    Column(
        "employee_id",
        Integer,
        ForeignKey("employees.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "service_id",
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class AdminUser(TimestampMixin, Base):
    __tablename__ = "admin_users"
    __table_args__ = (Index("admin_users_email", "email", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    email = mapped_column(String(255), nullable=False)
    password_hash = mapped_column(String(72), nullable=False)
    name = mapped_column(String(255))


class Service(TimestampMixin, Base):
    __tablename__ = "services"

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    description = mapped_column(Text)
    duration_minutes = mapped_column(Integer, nullable=False)
    price = mapped_column(Numeric(10, 2), nullable=False)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    requires_deposit = mapped_column(Boolean, nullable=False, default=False)
    deposit_percentage = mapped_column(Numeric(5, 2), nullable=False, default=0)

    employees: Mapped[List["Employee"]] = relationship(
        "Employee", secondary=employee_service, back_populates="services"
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment", back_populates="service"
    )
    time_slots: Mapped[List["TimeSlot"]] = relationship(
        "TimeSlot", back_populates="service", cascade="all, delete-orphan"
    )


class Client(TimestampMixin, Base):
    __tablename__ = "clients"
    __table_args__ = (Index("clients_whatsapp", "whatsapp", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    whatsapp = mapped_column(String(30), nullable=False)
    email = mapped_column(String(255))
    notes = mapped_column(Text)
    is_active = mapped_column(Boolean, nullable=False, default=True)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment", back_populates="client", cascade="all, delete-orphan"
    )


class Employee(TimestampMixin, Base):
    __tablename__ = "employees"
    __table_args__ = (Index("employees_email", "email", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    email = mapped_column(String(255), nullable=False)
    phone = mapped_column(String(20))
    is_active = mapped_column(Boolean, nullable=False, default=True)
    specialties = mapped_column(JSON)
    notes = mapped_column(Text)

    services: Mapped[List["Service"]] = relationship(
        "Service", secondary=employee_service, back_populates="employees"
    )
    schedules: Mapped[List["EmployeeSchedule"]] = relationship(
        "EmployeeSchedule",
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="EmployeeSchedule.day_of_week",
    )
    time_slots: Mapped[List["TimeSlot"]] = relationship(
        "TimeSlot", back_populates="employee"
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment", back_populates="employee"
    )

    def offers_service(self, service_id: int) -> bool:
        return any(s.id == service_id for s in self.services)


class EmployeeSchedule(TimestampMixin, Base):
    __tablename__ = "employee_schedules"
    __table_args__ = (
        UniqueConstraint(
            "employee_id", "day_of_week", "start_time", name="unique_employee_day_time"
        ),
        Index("employee_schedules_lookup", "employee_id", "day_of_week", "is_active"),
    )

    id = mapped_column(Integer, primary_key=True)
    employee_id = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    # ISO weekday: 1 = Monday ... 7 = Sunday
    day_of_week = mapped_column(Integer, nullable=False)
    start_time = mapped_column(Time, nullable=False)
    end_time = mapped_column(Time, nullable=False)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    notes = mapped_column(Text)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="schedules")


class Appointment(TimestampMixin, Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("appointments_employee_scheduled", "employee_id", "scheduled_at"),
        Index("appointments_status", "status"),
    )

    id = mapped_column(Integer, primary_key=True)
    service_id = mapped_column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    client_id = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    employee_id = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True
    )
    scheduled_at = mapped_column(DateTime, nullable=False)
    ends_at = mapped_column(DateTime, nullable=False)
    status = mapped_column(
        Enum(*APPOINTMENT_STATUSES, name="appointment_status"),
        nullable=False,
        default="pending_deposit",
    )
    total_price = mapped_column(Numeric(10, 2), nullable=False)
    deposit_amount = mapped_column(Numeric(10, 2), nullable=False, default=0)
    deposit_paid = mapped_column(Boolean, nullable=False, default=False)
    deposit_paid_at = mapped_column(DateTime)
    reschedule_count = mapped_column(Integer, nullable=False, default=0)
    special_requests = mapped_column(Text)
    reference_photo = mapped_column(String(500))
    admin_notes = mapped_column(Text)

    service: Mapped["Service"] = relationship("Service", back_populates="appointments")
    client: Mapped["Client"] = relationship("Client", back_populates="appointments")
    employee: Mapped[Optional["Employee"]] = relationship(
        "Employee", back_populates="appointments"
    )
    time_slots: Mapped[List["TimeSlot"]] = relationship(
        "TimeSlot", back_populates="appointment"
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment", back_populates="appointment", cascade="all, delete-orphan"
    )
    reminders: Mapped[List["Reminder"]] = relationship(
        "Reminder", back_populates="appointment", cascade="all, delete-orphan"
    )
    promotions: Mapped[List["AppointmentPromotion"]] = relationship(
        "AppointmentPromotion", back_populates="appointment", cascade="all, delete-orphan"
    )


class TimeSlot(TimestampMixin, Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint(
            "service_id",
            "date",
            "start_time",
            "employee_id",
            name="unique_service_date_time_employee",
        ),
        Index("time_slots_service_date_status", "service_id", "date", "status"),
        Index("time_slots_date_status", "date", "status"),
    )

    id = mapped_column(Integer, primary_key=True)
    service_id = mapped_column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    employee_id = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True
    )
    date = mapped_column(Date, nullable=False)
    start_time = mapped_column(Time, nullable=False)
    end_time = mapped_column(Time, nullable=False)
    status = mapped_column(
        Enum(*SLOT_STATUSES, name="time_slot_status"),
        nullable=False,
        default="available",
    )
    appointment_id = mapped_column(
        Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    notes = mapped_column(Text)

    service: Mapped["Service"] = relationship("Service", back_populates="time_slots")
    employee: Mapped[Optional["Employee"]] = relationship(
        "Employee", back_populates="time_slots"
    )
    appointment: Mapped[Optional["Appointment"]] = relationship(
        "Appointment", back_populates="time_slots"
    )


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("payments_appointment_status", "appointment_id", "status"),
        Index("payments_provider_ref", "payment_provider", "provider_payment_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    appointment_id = mapped_column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    amount = mapped_column(Numeric(10, 2), nullable=False)
    currency = mapped_column(String(3), nullable=False, default="ARS")
    payment_method = mapped_column(String(30), nullable=False)
    payment_provider = mapped_column(String(30))
    provider_payment_id = mapped_column(String(255))
    status = mapped_column(
        Enum(*PAYMENT_STATUSES, name="payment_status"),
        nullable=False,
        default="pending",
    )
    payment_metadata = mapped_column("metadata", JSON)
    paid_at = mapped_column(DateTime)
    refunded_at = mapped_column(DateTime)
    refund_amount = mapped_column(Numeric(10, 2))

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="payments"
    )


class Promotion(TimestampMixin, Base):
    __tablename__ = "promotions"
    __table_args__ = (
        Index("promotions_code", "code", unique=True),
        Index("promotions_active_window", "is_active", "starts_at", "expires_at"),
    )

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    description = mapped_column(Text)
    code = mapped_column(String(50), nullable=False)
    type = mapped_column(Enum("percentage", "fixed", name="promotion_type"), nullable=False)
    value = mapped_column(Numeric(8, 2), nullable=False)
    min_amount = mapped_column(Numeric(10, 2))
    max_discount = mapped_column(Numeric(10, 2))
    usage_limit = mapped_column(Integer)
    used_count = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    starts_at = mapped_column(DateTime, nullable=False)
    expires_at = mapped_column(DateTime, nullable=False)
    # ISO weekdays
    applicable_days = mapped_column(JSON)
    applicable_services = mapped_column(JSON)

    appointments: Mapped[List["AppointmentPromotion"]] = relationship(
        "AppointmentPromotion", back_populates="promotion", cascade="all, delete-orphan"
    )


class AppointmentPromotion(TimestampMixin, Base):
    __tablename__ = "appointment_promotion"
    __table_args__ = (
        UniqueConstraint("appointment_id", "promotion_id", name="unique_appointment_promotion"),
    )

    id = mapped_column(Integer, primary_key=True)
    appointment_id = mapped_column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    promotion_id = mapped_column(
        Integer, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False
    )
    discount_amount = mapped_column(Numeric(10, 2), nullable=False)

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="promotions"
    )
    promotion: Mapped["Promotion"] = relationship("Promotion", back_populates="appointments")


class Product(TimestampMixin, Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("products_sku", "sku", unique=True),
        Index("products_category_active", "category", "is_active"),
    )

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    description = mapped_column(Text)
    sku = mapped_column(String(100), nullable=False)
    category = mapped_column(String(100), nullable=False)
    brand = mapped_column(String(100))
    cost_price = mapped_column(Numeric(10, 2), nullable=False)
    selling_price = mapped_column(Numeric(10, 2))
    stock_quantity = mapped_column(Integer, nullable=False, default=0)
    min_stock_level = mapped_column(Integer, nullable=False, default=0)
    max_stock_level = mapped_column(Integer)
    unit = mapped_column(String(20), nullable=False, default="unidad")
    is_active = mapped_column(Boolean, nullable=False, default=True)
    notes = mapped_column(Text)

    stock_movements: Mapped[List["StockMovement"]] = relationship(
        "StockMovement",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="StockMovement.id.desc()",
    )

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity <= 0


class StockMovement(TimestampMixin, Base):
    __tablename__ = "stock_movements"
    __table_args__ = (Index("stock_movements_product_type", "product_id", "type"),)

    id = mapped_column(Integer, primary_key=True)
    product_id = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    type = mapped_column(Enum("in", "out", name="stock_movement_type"), nullable=False)
    quantity = mapped_column(Integer, nullable=False)
    reason = mapped_column(String(100), nullable=False)
    user_id = mapped_column(
        Integer, ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True
    )
    notes = mapped_column(Text)

    product: Mapped["Product"] = relationship("Product", back_populates="stock_movements")
    user: Mapped[Optional["AdminUser"]] = relationship("AdminUser")


class Notification(TimestampMixin, Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("notifications_recipient", "recipient_type", "recipient_id"),
        Index("notifications_status_scheduled", "status", "scheduled_for"),
    )

    id = mapped_column(Integer, primary_key=True)
    type = mapped_column(String(20), nullable=False)
    recipient_type = mapped_column(String(20), nullable=False)
    recipient_id = mapped_column(Integer, nullable=False)
    title = mapped_column(String(255), nullable=False)
    message = mapped_column(Text, nullable=False)
    data = mapped_column(JSON)
    status = mapped_column(
        Enum(*NOTIFICATION_STATUSES, name="notification_status"),
        nullable=False,
        default="pending",
    )
    sent_at = mapped_column(DateTime)
    read_at = mapped_column(DateTime)
    scheduled_for = mapped_column(DateTime)


class Reminder(TimestampMixin, Base):
    __tablename__ = "reminders"
    __table_args__ = (
        Index("reminders_status_scheduled", "status", "scheduled_for"),
        Index("reminders_appointment_type", "appointment_id", "type"),
    )

    id = mapped_column(Integer, primary_key=True)
    appointment_id = mapped_column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    type = mapped_column(Enum(*REMINDER_TYPES, name="reminder_type"), nullable=False)
    scheduled_for = mapped_column(DateTime, nullable=False)
    status = mapped_column(
        Enum("pending", "sent", "failed", name="reminder_status"),
        nullable=False,
        default="pending",
    )
    sent_at = mapped_column(DateTime)
    message = mapped_column(Text, nullable=False)
    channel = mapped_column(String(20), nullable=False, default="whatsapp")

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="reminders"
    )
