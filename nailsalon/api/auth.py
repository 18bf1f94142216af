from flask import Blueprint, g, jsonify, request
from sqlalchemy import select

from nailsalon.extensions import db
from nailsalon.models import AdminUser
from nailsalon.utils.auth import admin_required, check_password, issue_token

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/login", methods=["POST"])
def login_admin():
    """
    Admin login
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful, returns a bearer token
      400:
        description: Email and password required
      401:
        description: Invalid credentials
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"status": "error", "message": "Email and password required"}), 400

    admin = db.session.scalar(select(AdminUser).where(AdminUser.email == email))
    if not admin or not check_password(password, admin.password_hash):
        return jsonify({"status": "error", "message": "Invalid credentials"}), 401

    return (
        jsonify(
            {
                "status": "success",
                "message": "Login successful",
                "token": issue_token(admin),
                "user": {"id": admin.id, "email": admin.email, "name": admin.name},
            }
        ),
        200,
    )


@auth_bp.route("/logout", methods=["POST"])
@admin_required
def logout_admin():
    """
    Admin logout. Tokens are stateless; the client discards its copy.
    ---
    tags:
      - Auth
    responses:
      200:
        description: Logged out
    """
    return jsonify({"status": "success", "message": "Logged out"}), 200


@auth_bp.route("/me", methods=["GET"])
@admin_required
def current_admin():
    """
    Current admin profile
    ---
    tags:
      - Auth
    responses:
      200:
        description: The authenticated admin
      401:
        description: Missing or invalid token
    """
    admin = g.admin
    return jsonify({"id": admin.id, "email": admin.email, "name": admin.name}), 200
