# backend/ludocompta/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.cash import cash_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(cash_bp)
    app.register_blueprint(ledger_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
