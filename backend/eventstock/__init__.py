# backend/eventstock/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, install_sqlite_savepoints, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("eventstock").setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Checkout completion relies on SAVEPOINTs; pysqlite needs help for those
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        with app.app_context():
            install_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.events import events_bp
    from .routes.checkout import checkout_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(audit_bp)

    # One engine per app; routes fetch it from app.extensions
    from .services.checkout_service import CheckoutEngine
    app.extensions["checkout_engine"] = CheckoutEngine()

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
