# JSON shapes shared by the blueprints
from nailsalon.services import promotions


def _iso(value):
    return value.isoformat() if value else None


def _hm(value):
    return value.strftime("%H:%M") if value else None


def _money(value):
    return float(value) if value is not None else None


def service_to_dict(service):
    return {
        "id": service.id,
        "name": service.name,
        "description": service.description,
        "duration_minutes": service.duration_minutes,
        "price": _money(service.price),
        "is_active": service.is_active,
        "requires_deposit": service.requires_deposit,
        "deposit_percentage": _money(service.deposit_percentage),
    }


def client_to_dict(client):
    return {
        "id": client.id,
        "name": client.name,
        "whatsapp": client.whatsapp,
        "email": client.email,
        "notes": client.notes,
        "is_active": client.is_active,
        "created_at": _iso(client.created_at),
    }


def schedule_to_dict(schedule):
    return {
        "id": schedule.id,
        "employee_id": schedule.employee_id,
        "day_of_week": schedule.day_of_week,
        "start_time": _hm(schedule.start_time),
        "end_time": _hm(schedule.end_time),
        "is_active": schedule.is_active,
        "notes": schedule.notes,
    }


def employee_to_dict(employee, include_schedules=False):
    data = {
        "id": employee.id,
        "name": employee.name,
        "email": employee.email,
        "phone": employee.phone,
        "is_active": employee.is_active,
        "specialties": employee.specialties or [],
        "notes": employee.notes,
        "services": [{"id": s.id, "name": s.name} for s in employee.services],
    }
    if include_schedules:
        data["schedules"] = [schedule_to_dict(s) for s in employee.schedules]
    return data


def employee_public_dict(employee):
    return {
        "id": employee.id,
        "name": employee.name,
        "specialties": employee.specialties or [],
    }


def time_slot_to_dict(slot):
    return {
        "id": slot.id,
        "service_id": slot.service_id,
        "service_name": slot.service.name if slot.service else None,
        "employee_id": slot.employee_id,
        "employee_name": slot.employee.name if slot.employee else None,
        "date": _iso(slot.date),
        "start_time": _hm(slot.start_time),
        "end_time": _hm(slot.end_time),
        "status": slot.status,
        "appointment_id": slot.appointment_id,
        "notes": slot.notes,
    }


def appointment_to_dict(appointment):
    return {
        "id": appointment.id,
        "service_id": appointment.service_id,
        "service_name": appointment.service.name if appointment.service else None,
        "service_duration": (
            appointment.service.duration_minutes if appointment.service else None
        ),
        "client_id": appointment.client_id,
        "client_name": appointment.client.name if appointment.client else None,
        "client_whatsapp": appointment.client.whatsapp if appointment.client else None,
        "employee_id": appointment.employee_id,
        "employee_name": appointment.employee.name if appointment.employee else None,
        "scheduled_at": _iso(appointment.scheduled_at),
        "ends_at": _iso(appointment.ends_at),
        "status": appointment.status,
        "total_price": _money(appointment.total_price),
        "deposit_amount": _money(appointment.deposit_amount),
        "deposit_paid": appointment.deposit_paid,
        "deposit_paid_at": _iso(appointment.deposit_paid_at),
        "reschedule_count": appointment.reschedule_count,
        "special_requests": appointment.special_requests,
        "reference_photo": appointment.reference_photo,
        "admin_notes": appointment.admin_notes,
        "promotions": [
            {
                "promotion_id": ap.promotion_id,
                "code": ap.promotion.code if ap.promotion else None,
                "discount_amount": _money(ap.discount_amount),
            }
            for ap in appointment.promotions
        ],
        "created_at": _iso(appointment.created_at),
    }


def payment_to_dict(payment):
    return {
        "id": payment.id,
        "appointment_id": payment.appointment_id,
        "amount": _money(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "payment_provider": payment.payment_provider,
        "provider_payment_id": payment.provider_payment_id,
        "status": payment.status,
        "metadata": payment.payment_metadata or {},
        "paid_at": _iso(payment.paid_at),
        "refunded_at": _iso(payment.refunded_at),
        "refund_amount": _money(payment.refund_amount),
        "created_at": _iso(payment.created_at),
    }


def promotion_to_dict(promotion):
    return {
        "id": promotion.id,
        "name": promotion.name,
        "description": promotion.description,
        "code": promotion.code,
        "type": promotion.type,
        "value": _money(promotion.value),
        "min_amount": _money(promotion.min_amount),
        "max_discount": _money(promotion.max_discount),
        "usage_limit": promotion.usage_limit,
        "used_count": promotion.used_count,
        "is_active": promotion.is_active,
        "starts_at": _iso(promotion.starts_at),
        "expires_at": _iso(promotion.expires_at),
        "applicable_days": promotion.applicable_days or [],
        "applicable_services": promotion.applicable_services or [],
        "is_valid": promotions.is_valid(promotion),
    }


def product_to_dict(product):
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "sku": product.sku,
        "category": product.category,
        "brand": product.brand,
        "cost_price": _money(product.cost_price),
        "selling_price": _money(product.selling_price),
        "stock_quantity": product.stock_quantity,
        "min_stock_level": product.min_stock_level,
        "max_stock_level": product.max_stock_level,
        "unit": product.unit,
        "is_active": product.is_active,
        "is_low_stock": product.is_low_stock,
        "is_out_of_stock": product.is_out_of_stock,
        "notes": product.notes,
    }


def stock_movement_to_dict(movement):
    return {
        "id": movement.id,
        "product_id": movement.product_id,
        "type": movement.type,
        "quantity": movement.quantity,
        "reason": movement.reason,
        "user_id": movement.user_id,
        "notes": movement.notes,
        "created_at": _iso(movement.created_at),
    }


def notification_to_dict(notification):
    return {
        "id": notification.id,
        "type": notification.type,
        "recipient_type": notification.recipient_type,
        "recipient_id": notification.recipient_id,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "status": notification.status,
        "sent_at": _iso(notification.sent_at),
        "read_at": _iso(notification.read_at),
        "scheduled_for": _iso(notification.scheduled_for),
        "created_at": _iso(notification.created_at),
    }
