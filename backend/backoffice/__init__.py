# backend/backoffice/__init__.py
from flask import Flask

from .config import Config
from .extensions import configure_sqlite_transactions, db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        configure_sqlite_transactions(db.engine)

    # Storage, notifications, rates, offers, audit log, auth
    from .services.collaborators import install_default_collaborators
    install_default_collaborators(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
