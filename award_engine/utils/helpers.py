"""Shared utility functions for the service layer.

get_or_raise:              PK lookup raising NotFoundError
load_requisition_for_update: per-requisition row lock (single writer)
transaction:               commit-or-rollback wrapper around one transition
utcnow / as_utc:           timezone-aware clock; SQLite returns naive values
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError

from award_engine.core.exceptions import NotFoundError
from award_engine.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


def load_requisition_for_update(requisition_id: int):
    """Load a requisition with ``SELECT … FOR UPDATE``.

    Serialises transitions on the same requisition; the mapper's version
    counter catches writers on backends that ignore the row lock (SQLite).
    """
    from award_engine.models.requisition import Requisition

    req = (
        db.session.query(Requisition)
        .filter(Requisition.id == requisition_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if req is None:
        raise NotFoundError(resource="Requisition", resource_id=requisition_id)
    return req


# ── Transaction helper ───────────────────────────────────────────────────────

@contextmanager
def transaction():
    """Commit the session when the block succeeds, roll back when it raises.

    Either the new status, approver, award rows and audit record are all
    persisted, or none are.  Exceptions propagate unchanged after rollback.

    Usage::

        with transaction():
            req = load_requisition_for_update(requisition_id)
            ...
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        raise
    except Exception:
        db.session.rollback()
        raise
