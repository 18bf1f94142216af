import logging
from typing import Optional

from nailsalon.extensions import db
from nailsalon.models import Product, StockMovement

logger = logging.getLogger(__name__)


class StockError(Exception):
    """A stock adjustment that would leave the product below zero."""


def add_stock(product: Product, quantity: int, reason: str, user_id=None, notes=None) -> StockMovement:
    product.stock_quantity += quantity
    movement = StockMovement(
        product=product,
        type="in",
        quantity=quantity,
        reason=reason,
        user_id=user_id,
        notes=notes,
    )
    db.session.add(movement)
    return movement


def remove_stock(product: Product, quantity: int, reason: str, user_id=None, notes=None) -> StockMovement:
    if quantity > product.stock_quantity:
        raise StockError(
            f"Cannot remove {quantity} {product.unit}: only {product.stock_quantity} in stock"
        )
    product.stock_quantity -= quantity
    movement = StockMovement(
        product=product,
        type="out",
        quantity=quantity,
        reason=reason,
        user_id=user_id,
        notes=notes,
    )
    db.session.add(movement)
    return movement


def adjust_stock(
    product: Product, quantity: int, reason: str, user_id=None, notes: Optional[str] = None
) -> StockMovement:
    """Positive quantities add stock, negative ones remove it."""
    if quantity > 0:
        movement = add_stock(product, quantity, reason, user_id, notes)
    else:
        movement = remove_stock(product, -quantity, reason, user_id, notes)
    logger.info(
        "Stock %s %d for product %s (%s), now %d",
        movement.type,
        movement.quantity,
        product.id,
        reason,
        product.stock_quantity,
    )
    return movement


def stock_report_rows(products):
    rows = []
    for product in products:
        last = product.stock_movements[0] if product.stock_movements else None
        rows.append(
            {
                "id": product.id,
                "name": product.name,
                "sku": product.sku,
                "category": product.category,
                "current_stock": product.stock_quantity,
                "min_stock_level": product.min_stock_level,
                "is_low_stock": product.is_low_stock,
                "is_out_of_stock": product.is_out_of_stock,
                "total_value": round(float(product.cost_price) * product.stock_quantity, 2),
                "last_movement": last.created_at.isoformat() if last and last.created_at else None,
            }
        )
    return rows
