"""
Swagger/OpenAPI configuration for the nail salon booking API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Nail Salon Booking API",
        "description": "REST API for appointment booking, time slots, deposits, promotions, inventory and client notifications",
        "contact": {"email": "hola@campinails.com"},
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT Authorization header using the Bearer scheme. Example: "Authorization: Bearer {token}"',
        }
    },
    "security": [{"Bearer": []}],
    "tags": [
        {"name": "Authentication", "description": "Admin login"},
        {"name": "Services", "description": "Service catalogue"},
        {"name": "Clients", "description": "Client records"},
        {"name": "Employees", "description": "Employees, their services and weekly schedules"},
        {"name": "Time Slots", "description": "Slot generation and availability"},
        {"name": "Appointments", "description": "Booking, rescheduling and deposits"},
        {"name": "Payments", "description": "Payments, refunds and provider webhooks"},
        {"name": "Promotions", "description": "Promotion codes and discounts"},
        {"name": "Products", "description": "Inventory and stock movements"},
        {"name": "Notifications", "description": "WhatsApp, SMS, email and push notifications"},
        {"name": "Dashboard", "description": "Statistics and Excel reports"},
        {"name": "Uploads", "description": "Reference photo upload"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "error": {"type": "string"},
                "details": {"type": "string"},
            },
        },
        "Service": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "name": {"type": "string"},
                "duration_minutes": {"type": "integer"},
                "price": {"type": "number", "format": "float"},
                "requires_deposit": {"type": "boolean"},
                "deposit_percentage": {"type": "number", "format": "float"},
                "is_active": {"type": "boolean"},
            },
        },
        "TimeSlot": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "service_id": {"type": "integer"},
                "employee_id": {"type": "integer"},
                "date": {"type": "string", "format": "date"},
                "start_time": {"type": "string", "example": "10:00"},
                "end_time": {"type": "string", "example": "11:00"},
                "status": {
                    "type": "string",
                    "enum": ["available", "reserved", "cancelled", "blocked"],
                },
            },
        },
        "Appointment": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "client_id": {"type": "integer"},
                "service_id": {"type": "integer"},
                "employee_id": {"type": "integer"},
                "scheduled_at": {"type": "string", "format": "date-time"},
                "ends_at": {"type": "string", "format": "date-time"},
                "status": {
                    "type": "string",
                    "enum": [
                        "pending_deposit",
                        "confirmed",
                        "rescheduled",
                        "cancelled",
                        "no_show",
                        "completed",
                    ],
                },
                "total_price": {"type": "number", "format": "float"},
                "deposit_amount": {"type": "number", "format": "float"},
                "deposit_paid": {"type": "boolean"},
                "reschedule_count": {"type": "integer"},
            },
        },
        "BookingPayload": {
            "type": "object",
            "required": ["service_id", "scheduled_at", "name", "whatsapp"],
            "properties": {
                "service_id": {"type": "integer", "example": 1},
                "employee_id": {"type": "integer", "example": 2},
                "scheduled_at": {"type": "string", "example": "2026-11-03 10:00"},
                "name": {"type": "string", "example": "Lucía Gómez"},
                "whatsapp": {"type": "string", "example": "+5491122334455"},
                "email": {"type": "string", "format": "email"},
                "special_requests": {"type": "string"},
                "reference_photo": {"type": "string"},
                "promotion_code": {"type": "string"},
            },
        },
        "Payment": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "appointment_id": {"type": "integer"},
                "amount": {"type": "number", "format": "float"},
                "currency": {"type": "string", "example": "ARS"},
                "payment_method": {"type": "string"},
                "payment_provider": {"type": "string"},
                "status": {"type": "string"},
            },
        },
    },
}
