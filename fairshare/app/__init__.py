"""
app/__init__.py — FairShare application factory.

create_app(config_name) builds a fully wired Flask app and does nothing at
import time, so tests can build isolated apps, wsgi.py decides when to
serve, and Alembic can read the metadata without a running server.

Wiring order:
  1. config_by_name[config_name] (plus the production guard)
  2. log levels from LOG_LEVEL
  3. db / ma via init_app()
  4. model import, so every table is on db.metadata
  5. the four group-scoped blueprints under /api/v1/groups
  6. error handlers and the dev-only CORS hook

Money leaves the API as strings ("33.34"), never as JSON numbers; see
DecimalJSONProvider.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from fairshare.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """Writes Decimal values as their exact string form: Decimal("0.10") → "0.10"."""

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Builds the app for "development", "testing" or "production".

    Unknown names fall back to the development settings.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # ValueError on unsafe settings

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Deferred to keep the models out of the import graph of fairshare.app.
    from fairshare.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Imported for the side effect of registering the mappers.
    with app.app_context():
        from fairshare.app.models import (  # noqa: F401
            expense,
            group,
            member,
            obligation,
            settlement,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the Flask app logger and to the `fairshare` package
    loggers (services log commits and write conflicts under it).
    """
    level = logging.getLevelName(app.config.get("LOG_LEVEL", "INFO"))
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("fairshare")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints.

    Every resource lives under a group, so all blueprints share the
    /api/v1/groups prefix and individual route files only specify the path
    relative to it (e.g. "" and "/<int:group_id>/expenses").
    """
    from fairshare.app.routes.balances import balances_bp
    from fairshare.app.routes.expenses import expenses_bp
    from fairshare.app.routes.groups import groups_bp
    from fairshare.app.routes.settlements import settlements_bp

    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/groups")


def _register_error_handlers(app: Flask) -> None:
    """
    Every failure becomes {"error": {"code", "message", "field"?}}.

      AppError        → its own code and status
      ValidationError → 400 with a registered code, MISSING_FIELD or INVALID_FIELD
      HTTPException   → its own status (404 for unknown URLs, 405, ...)
      anything else   → 500 INTERNAL_ERROR, traceback to the log only
    """
    from fairshare.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        # Only the first message is reported.
        field, raw_message = _first_validation_message(error.messages)

        is_registered = raw_message in vars(ErrorCode).values()
        if is_registered:
            code = raw_message
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
        else:
            code = ErrorCode.INVALID_FIELD

        body = {"code": code, "message": _code_to_message(code) if is_registered else raw_message}
        if field is not None:
            body["field"] = field
        return jsonify({"error": body}), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return jsonify({
                "error": {
                    "code": ErrorCode.INVALID_FIELD if error.code == 400 else error.name.upper().replace(" ", "_"),
                    "message": error.description,
                }
            }), error.code

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """Lets a local frontend on another port call the API (DEBUG/TESTING only)."""

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            # Browsers refuse "*" on requests that carry Authorization.
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _first_validation_message(messages, field: str | None = None) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages structure and returns the first
    (field, message) pair. Nested keys (list indexes, dict keys) keep the
    top-level field name.
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            top = field if field is not None else (None if key == "_schema" else str(key))
            return _first_validation_message(value, top)
        return field, "Invalid input."
    if isinstance(messages, list):
        if not messages:
            return field, "Invalid value."
        first = messages[0]
        if isinstance(first, (dict, list)):
            return _first_validation_message(first, field)
        return field, str(first)
    return field, str(messages)


def _code_to_message(code: str) -> str:
    """Message for schema errors whose raw message is an ErrorCode name."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_CATEGORY": "The category value is not valid.",
        "INVALID_CURRENCY": "currency_code must be a three-letter uppercase code.",
        "INVALID_SPLIT_STRATEGY": (
            "split_strategy must be one of 'equal', 'equity', 'exact', "
            "'percentage' or 'shares'."
        ),
        "DUPLICATE_PARTICIPANT": "The same member id appears more than once in participant_ids.",
        "PAYER_NOT_PARTICIPANT": "The payer must be one of the participants.",
        "MISSING_STRATEGY_PARAMS": (
            "The split strategy needs a value for every participant "
            "(exact_amounts for 'exact', percentages for 'percentage')."
        ),
        "UNKNOWN_STRATEGY_PARAM_MEMBER": (
            "A strategy parameter refers to a member that is not a participant."
        ),
    }
    return _messages.get(code, "Invalid input.")
