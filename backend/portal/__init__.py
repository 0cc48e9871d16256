# backend/portal/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Event tables reject UPDATE/DELETE at flush time
    from .services.audit_service import register_append_only_guard
    register_append_only_guard()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.invoices import invoices_bp
    from .routes.files import files_bp
    from .routes.shipments import shipments_bp
    from .routes.action_queue import action_queue_bp
    from .routes.automation import automation_bp
    from .routes.entities import entities_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(shipments_bp)
    app.register_blueprint(action_queue_bp)
    app.register_blueprint(automation_bp)
    app.register_blueprint(entities_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
