# backend/ceramerp/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    """Bounded lock waits on file-backed SQLite (busy timeout)."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if uri.startswith("sqlite") and ":memory:" not in uri and uri not in {"sqlite://", "sqlite:///"}:
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", float(app.config["LOCK_TIMEOUT_SECONDS"]))
        options["connect_args"] = connect_args
    return options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.orders import orders_bp
    from .routes.purchasing import purchasing_bp
    from .routes.returns import returns_bp, purchase_returns_bp
    from .routes.inventory import inventory_bp
    from .routes.pricing import pricing_bp
    from .routes.accounting import accounting_bp

    app.register_blueprint(orders_bp)
    app.register_blueprint(purchasing_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(purchase_returns_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(pricing_bp)
    app.register_blueprint(accounting_bp)

    from .services.audit_service import install_audit_sink
    install_audit_sink(app, app.config.get("AUDIT_SINK"))

    from .services.catalogue_service import install_refresh_worker
    install_refresh_worker(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
