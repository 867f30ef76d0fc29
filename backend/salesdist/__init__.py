# backend/salesdist/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import CoreError, StorageUnavailableError
from .extensions import db


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Engine options must be in place before init_app creates the engine
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(engine_options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["SQLITE_BUSY_TIMEOUT"])
        connect_args.setdefault("check_same_thread", False)
        engine_options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)

    # Import models so create_all sees the full metadata
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stocks import stocks_bp
    from .routes.transactions import transactions_bp
    from .routes.visits import visits_bp
    from .routes.commissions import commissions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stocks_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(visits_bp)
    app.register_blueprint(commissions_bp)

    @app.errorhandler(CoreError)
    def handle_core_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(StorageUnavailableError)
    def handle_storage_unavailable(error):
        app.logger.error("Storage unavailable: %s", error)
        return jsonify({"error": "Storage temporarily unavailable", "kind": "StorageUnavailableError"}), 503

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
