"""
IPO Application Workflow
Flask Application Factory.

Usage:
    from ipo_workflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from ipo_workflow.config import config
from ipo_workflow.middleware.logging_config import configure_logging
from ipo_workflow.middleware.timing import init_request_timing
from ipo_workflow.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT/RELEASE nest correctly
        dbapi_conn.isolation_level = None


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite" and conn.dialect.driver == "pysqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)
    init_request_timing(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from ipo_workflow.models import directory as _directory_models      # noqa: F401
    from ipo_workflow.models import application as _application_models  # noqa: F401
    from ipo_workflow.models import feedback as _feedback_models        # noqa: F401
    from ipo_workflow.models import notification as _notification_models  # noqa: F401
    from ipo_workflow.models import listing as _listing_models          # noqa: F401
    from ipo_workflow.models import audit as _audit_models              # noqa: F401
    from ipo_workflow.models import comment as _comment_models          # noqa: F401
    from ipo_workflow.models import review as _review_models            # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from ipo_workflow.blueprints.application_bp import application_bp
    from ipo_workflow.blueprints.notification_bp import notification_bp

    app.register_blueprint(application_bp)
    app.register_blueprint(notification_bp)

    logger.info("IPO workflow app created (env=%s)", config_name)
    return app
