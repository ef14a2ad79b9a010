from __future__ import annotations

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .config import load_settings
from .db import engine
from .errors import RaffleError
from .models import Base
from .routes.admin import bp as admin_bp
from .routes.config import bp as config_bp
from .routes.health import bp as health_bp
from .routes.oracle import bp as oracle_bp
from .routes.raffle import bp as raffle_bp
from .routes.upkeep import bp as upkeep_bp


def create_app() -> Flask:
    settings = load_settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask.secret_key
    Base.metadata.create_all(engine)

    app.register_blueprint(health_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(raffle_bp, url_prefix="/raffle")
    app.register_blueprint(upkeep_bp, url_prefix="/upkeep")
    app.register_blueprint(oracle_bp, url_prefix="/oracle")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")

    @app.errorhandler(RaffleError)
    def handle_raffle_error(exc: RaffleError):
        app.logger.warning("%s: %s", exc.code, exc)
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        errors = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in exc.errors()]
        return jsonify({"error": "ValidationError", "details": errors}), 400

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": str(exc)}), 500

    return app
