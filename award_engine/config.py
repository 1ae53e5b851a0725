"""
Award Engine settings, one class per environment.

    create_app("testing") → app.config.from_object(config["testing"])

Database URLs come from DATABASE_URL / TEST_DATABASE_URL; everything the
award workflow reads (review chain fallback, role names, standby limit,
response window) can be overridden through the environment.
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Local SQLite file used when DATABASE_URL is unset
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'award_engine_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _split_roles(raw: str) -> list[str]:
    return [r.strip() for r in raw.split(",") if r.strip()]


def _database_url(default=None):
    # SQLAlchemy 2 rejects the legacy postgres:// scheme
    url = os.getenv("DATABASE_URL", "")
    return url.replace("postgres://", "postgresql://", 1) if url else default


class Config:
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Post-bid review chain used when no approval-matrix tier is configured.
    # Ordered, comma-separated role names; empty means no review required.
    REVIEW_CHAIN = _split_roles(os.getenv("REVIEW_CHAIN", ""))

    # Roles that may act on any approval step
    ADMIN_ROLES = _split_roles(os.getenv("ADMIN_ROLES", "Admin"))
    # Roles allowed to finalize awards, promote standbys and review partial closures
    PROCUREMENT_ROLES = _split_roles(os.getenv("PROCUREMENT_ROLES", "Procurement_Officer"))

    # Ranks 2..(1 + limit) become standbys
    AWARD_STANDBY_LIMIT = int(os.getenv("AWARD_STANDBY_LIMIT", "2"))
    # Fresh response window granted to a promoted standby
    AWARD_RESPONSE_WINDOW_HOURS = int(os.getenv("AWARD_RESPONSE_WINDOW_HOURS", "72"))

    # JSON approval matrix loaded by `flask seed-approval-matrix`
    APPROVAL_MATRIX_FILE = os.getenv(
        "APPROVAL_MATRIX_FILE", os.path.join(basedir, "instance", "approval_matrix.json"),
    )


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REVIEW_CHAIN = []
    ADMIN_ROLES = ["Admin"]
    PROCUREMENT_ROLES = ["Procurement_Officer"]
    AWARD_STANDBY_LIMIT = 2
    AWARD_RESPONSE_WINDOW_HOURS = 72


class ProductionConfig(Config):
    """Requires DATABASE_URL; create_app refuses to start without it."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Award transitions hold a row lock; cap statements at 30s
        "connect_args": {"options": "-c statement_timeout=30000"},
    }


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
