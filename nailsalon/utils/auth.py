import datetime
from functools import wraps

import bcrypt
import jwt
from flask import current_app, g, jsonify, request

from nailsalon.extensions import db
from nailsalon.models import AdminUser


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, stored_hash) -> bool:
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), stored_hash)


def issue_token(admin: AdminUser) -> str:
    hours = current_app.config.get("JWT_EXPIRATION_HOURS", 8)
    payload = {
        "user_id": admin.id,
        "email": admin.email,
        "role": "ADMIN",
        "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=hours),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def admin_required(view):
    """Reject the request unless it carries a valid admin bearer token.

    The authenticated ``AdminUser`` is exposed as ``g.admin``.
    """

    @wraps(view)
    def wrapper(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Missing or invalid Authorization header"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        try:
            payload = jwt.decode(
                token, current_app.config["SECRET_KEY"], algorithms=["HS256"]
            )
        except jwt.ExpiredSignatureError:
            return jsonify({"error": "Token has expired"}), 401
        except jwt.InvalidTokenError:
            return jsonify({"error": "Invalid token"}), 401

        if payload.get("role") != "ADMIN":
            return jsonify({"error": "Admin access required"}), 403

        admin = db.session.get(AdminUser, payload.get("user_id"))
        if not admin:
            return jsonify({"error": "Admin account no longer exists"}), 401

        g.admin = admin
        return view(*args, **kwargs)

    return wrapper
