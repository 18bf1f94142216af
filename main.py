import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flasgger import Swagger
from werkzeug.exceptions import MethodNotAllowed, NotFound

from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
from nailsalon.config import Config
from nailsalon.extensions import db
from nailsalon.api.appointments import appointments_bp
from nailsalon.api.auth import auth_bp
from nailsalon.api.clients import clients_bp
from nailsalon.api.dashboard import dashboard_bp
from nailsalon.api.employees import employees_bp
from nailsalon.api.notifications import notifications_bp
from nailsalon.api.payments import payments_bp
from nailsalon.api.products import products_bp
from nailsalon.api.promotions import promotions_bp
from nailsalon.api.services import services_bp
from nailsalon.api.time_slots import time_slots_bp
from nailsalon.api.uploads import uploads_bp
from nailsalon.commands import register_commands
from nailsalon.services.scheduling import BookingError
from nailsalon.utils.validation import ValidationError


def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        db.session.rollback()
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(BookingError)
    def handle_booking_error(e):
        db.session.rollback()
        app.logger.info("Booking rejected: %s", e.message)
        return jsonify({"error": e.message}), 422

    @app.errorhandler(NotFound)
    def handle_not_found(e):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(MethodNotAllowed)
    def handle_method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("nailsalon").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    CORS(app)
    db.init_app(app)

    # Determine host based on environment
    swagger_template = SWAGGER_TEMPLATE.copy()
    swagger_template["host"] = os.environ.get("API_HOST", "127.0.0.1:5000")
    Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)

    blueprints = [
        auth_bp,
        services_bp,
        clients_bp,
        employees_bp,
        time_slots_bp,
        appointments_bp,
        payments_bp,
        promotions_bp,
        products_bp,
        notifications_bp,
        dashboard_bp,
        uploads_bp,
    ]
    for bp in blueprints:
        app.register_blueprint(bp)

    @app.route("/")
    def home():
        """
        Root endpoint - API status
        ---
        tags:
          - Utility
        responses:
          200:
            description: API is running
            schema:
              type: object
              properties:
                status:
                  type: string
                message:
                  type: string
                docs_url:
                  type: string
        """
        return {
            "status": "ok",
            "message": f"{app.config.get('SALON_NAME')} backend is running!",
            "docs_url": "/api/docs",
        }, 200

    register_error_handlers(app)
    register_commands(app)

    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        from nailsalon.scheduler import init_scheduler

        init_scheduler(app)

    app.logger.info("App created with %d routes", len(list(app.url_map.iter_rules())))
    return app


app = create_app()


if __name__ == "__main__":
    # Create a .env containing:
    #       MYSQL_PUBLIC_URL= mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/nailsalon
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
