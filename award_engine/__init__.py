"""
Award Engine application factory.

    from award_engine import create_app
    app = create_app()            # APP_ENV, or "development"
    app = create_app("testing")

The app carries the database binding, logging and two CLI commands:

    flask --app wsgi expire-award-deadlines
    flask --app wsgi seed-approval-matrix
"""

import json
import logging
import os

from flask import Flask
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from award_engine.config import config
from award_engine.core.logging_config import configure_logging
from award_engine.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Build a configured Flask app.

    Args:
        config_name: "development", "testing" or "production";
                     defaults to the APP_ENV environment variable.

    Raises:
        RuntimeError: production settings without DATABASE_URL.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(f"DATABASE_URL must be set for the '{config_name}' configuration")

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)

    # Register every table on db.metadata
    from award_engine.models import audit, directory, quotation, requisition  # noqa: F401

    os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("Could not create tables at startup: %s", e)

    _register_commands(app)
    return app


def _register_commands(app):
    @app.cli.command("expire-award-deadlines")
    def expire_award_deadlines_cmd():
        """Decline every award offer whose response deadline has passed."""
        from award_engine.services.award_lifecycle import expire_award_deadlines
        result = expire_award_deadlines()
        for outcome in result["results"]:
            logger.info(
                "Requisition %s: %s (status %s)",
                outcome.requisition_id, outcome.outcome, outcome.status,
                extra={"requisition_id": outcome.requisition_id, "outcome": outcome.outcome},
            )
        logger.info(
            "Checked %s requisition(s); %s expired, %s error(s).",
            result["checked"], len(result["results"]), len(result["errors"]),
        )

    @app.cli.command("seed-approval-matrix")
    def seed_approval_matrix_cmd():
        """Load approval-matrix tiers from APPROVAL_MATRIX_FILE (replaces existing tiers)."""
        from award_engine.services.directory import seed_approval_matrix
        path = app.config["APPROVAL_MATRIX_FILE"]
        if not os.path.exists(path):
            logger.error("Approval matrix file not found: %s", path)
            return
        with open(path, encoding="utf-8") as fh:
            tiers = json.load(fh)
        count = seed_approval_matrix(tiers)
        db.session.commit()
        logger.info("Seeded %s approval tier(s) from %s.", count, path)
