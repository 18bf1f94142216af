from flask import Blueprint, current_app, g, jsonify, request, send_file
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from nailsalon.extensions import db
from nailsalon.models import Product
from nailsalon.services import inventory, reports
from nailsalon.utils.auth import admin_required
from nailsalon.utils.serializers import product_to_dict, stock_movement_to_dict
from nailsalon.utils.validation import (
    ValidationError,
    parse_bool,
    parse_decimal,
    parse_int,
    require_fields,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _sku_taken(sku, exclude_id=None):
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    return db.session.scalar(stmt.limit(1)) is not None


def _apply_fields(product, data):
    for field in ("name", "sku", "category"):
        if field in data:
            if not data[field]:
                raise ValidationError(f"{field} cannot be empty")
            setattr(product, field, str(data[field]).strip())
    for field in ("description", "brand", "notes"):
        if field in data:
            setattr(product, field, data[field])
    if "unit" in data:
        product.unit = data["unit"] or "unidad"
    if "cost_price" in data:
        product.cost_price = parse_decimal(data["cost_price"], "cost_price", 0)
    if "selling_price" in data:
        product.selling_price = (
            parse_decimal(data["selling_price"], "selling_price", 0)
            if data["selling_price"] is not None
            else None
        )
    if "stock_quantity" in data:
        product.stock_quantity = parse_int(data["stock_quantity"], "stock_quantity", 0)
    if "min_stock_level" in data:
        product.min_stock_level = parse_int(data["min_stock_level"], "min_stock_level", 0)
    if "max_stock_level" in data:
        product.max_stock_level = (
            parse_int(data["max_stock_level"], "max_stock_level", 0)
            if data["max_stock_level"] is not None
            else None
        )
    if "is_active" in data:
        product.is_active = parse_bool(data["is_active"])

    if product.max_stock_level is not None and product.max_stock_level < product.min_stock_level:
        raise ValidationError("max_stock_level cannot be lower than min_stock_level")


@products_bp.route("", methods=["GET"])
@admin_required
def list_products():
    """
    List products
    ---
    tags:
      - Products
    parameters:
      - {in: query, name: category, type: string}
      - {in: query, name: active, type: boolean}
      - {in: query, name: low_stock, type: boolean}
      - {in: query, name: search, type: string, description: Matches name, sku or brand}
    responses:
      200:
        description: Products ordered by name
    """
    args = request.args
    stmt = select(Product)
    if args.get("category"):
        stmt = stmt.where(Product.category == args["category"])
    if args.get("active") is not None:
        stmt = stmt.where(Product.is_active.is_(parse_bool(args["active"])))
    if parse_bool(args.get("low_stock", False)):
        stmt = stmt.where(Product.stock_quantity <= Product.min_stock_level)
    if args.get("search"):
        pattern = f"%{args['search']}%"
        stmt = stmt.where(
            or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.brand.ilike(pattern))
        )
    products = db.session.scalars(stmt.order_by(Product.name)).all()
    return jsonify([product_to_dict(p) for p in products]), 200


@products_bp.route("", methods=["POST"])
@admin_required
def create_product():
    """
    Create a product
    ---
    tags:
      - Products
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, sku, category, cost_price]
          properties:
            name: {type: string}
            sku: {type: string}
            category: {type: string}
            brand: {type: string}
            cost_price: {type: number}
            selling_price: {type: number}
            stock_quantity: {type: integer}
            min_stock_level: {type: integer}
            max_stock_level: {type: integer}
            unit: {type: string}
    responses:
      201:
        description: Product created
      422:
        description: SKU already in use
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, ["name", "sku", "category", "cost_price"])
    if _sku_taken(str(data["sku"]).strip()):
        return jsonify({"error": "A product with this SKU already exists"}), 422

    product = Product(stock_quantity=0, min_stock_level=0, unit="unidad", is_active=True)
    _apply_fields(product, data)

    try:
        db.session.add(product)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(product_to_dict(product)), 201


@products_bp.route("/low-stock", methods=["GET"])
@admin_required
def list_low_stock():
    products = db.session.scalars(
        select(Product)
        .where(Product.is_active.is_(True), Product.stock_quantity <= Product.min_stock_level)
        .order_by(Product.stock_quantity, Product.name)
    ).all()
    return jsonify([product_to_dict(p) for p in products]), 200


@products_bp.route("/categories", methods=["GET"])
@admin_required
def list_categories():
    categories = db.session.scalars(
        select(Product.category).distinct().order_by(Product.category)
    ).all()
    return jsonify(categories), 200


@products_bp.route("/stock-report", methods=["GET"])
@admin_required
def stock_report():
    """
    Current stock per product
    ---
    tags:
      - Products
    parameters:
      - {in: query, name: category, type: string}
    responses:
      200:
        description: Stock level, value and last movement per product
    """
    stmt = select(Product).order_by(Product.category, Product.name)
    if request.args.get("category"):
        stmt = stmt.where(Product.category == request.args["category"])
    rows = inventory.stock_report_rows(db.session.scalars(stmt).all())
    return (
        jsonify(
            {
                "products": rows,
                "total_products": len(rows),
                "low_stock_count": sum(1 for r in rows if r["is_low_stock"]),
                "out_of_stock_count": sum(1 for r in rows if r["is_out_of_stock"]),
                "total_value": round(sum(r["total_value"] for r in rows), 2),
            }
        ),
        200,
    )


@products_bp.route("/stock-report/export", methods=["GET"])
@admin_required
def export_stock_report():
    """
    Download the stock report as an Excel file
    ---
    tags:
      - Products
    produces:
      - application/vnd.openxmlformats-officedocument.spreadsheetml.sheet
    responses:
      200:
        description: xlsx workbook with one Inventory sheet
    """
    try:
        frame = reports.inventory_frame(request.args.get("category"))
        output = reports.build_workbook({"Inventory": frame})
    except Exception as e:
        current_app.logger.error("Stock report export failed: %s", e)
        return jsonify({"error": "Could not build the report", "details": str(e)}), 500

    return send_file(
        output,
        mimetype=reports.XLSX_MIMETYPE,
        as_attachment=True,
        download_name=reports.report_filename("stock_report"),
    )


@products_bp.route("/<int:product_id>", methods=["GET"])
@admin_required
def get_product(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    data = product_to_dict(product)
    data["stock_movements"] = [stock_movement_to_dict(m) for m in product.stock_movements]
    return jsonify(data), 200


@products_bp.route("/<int:product_id>", methods=["PUT"])
@admin_required
def update_product(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404

    data = request.get_json(silent=True) or {}
    if data.get("sku") and _sku_taken(str(data["sku"]).strip(), exclude_id=product_id):
        return jsonify({"error": "A product with this SKU already exists"}), 422
    _apply_fields(product, data)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify(product_to_dict(product)), 200


@products_bp.route("/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404

    try:
        db.session.delete(product)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return jsonify({"message": "Product deleted"}), 200


@products_bp.route("/<int:product_id>/adjust-stock", methods=["POST"])
@admin_required
def adjust_stock(product_id):
    """
    Add or remove stock
    ---
    tags:
      - Products
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [quantity, reason]
          properties:
            quantity:
              type: integer
              description: Positive adds stock, negative removes it
            reason:
              type: string
            notes:
              type: string
    responses:
      200:
        description: Movement recorded, returns new_stock
      422:
        description: Not enough stock to remove
    """
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404

    data = request.get_json(silent=True) or {}
    require_fields(data, ["quantity", "reason"])
    quantity = parse_int(data["quantity"], "quantity")
    if quantity == 0:
        raise ValidationError("quantity cannot be zero")

    try:
        movement = inventory.adjust_stock(
            product, quantity, data["reason"], user_id=g.admin.id, notes=data.get("notes")
        )
    except inventory.StockError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 422

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({"error": "Database error", "details": str(e)}), 500

    return (
        jsonify(
            {
                "product": product_to_dict(product),
                "movement": stock_movement_to_dict(movement),
                "new_stock": product.stock_quantity,
            }
        ),
        200,
    )
