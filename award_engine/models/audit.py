"""
Award Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for requisition and
      award lifecycle events.  Every transition writes exactly one row.
"""

import json
from datetime import datetime, timezone

from award_engine.models import db

# Vocabulary; write_audit refuses anything else
AUDIT_ENTITY_TYPES = {"requisition", "quotation"}

AUDIT_ACTIONS = {
    # Pre-bid chain
    "requisition.submit",
    "requisition.approve",
    "requisition.reject",
    # Bidding & scoring
    "requisition.define_criteria",
    "requisition.assign_committee",
    "requisition.extend_scoring_deadline",
    "requisition.open_rfq",
    "requisition.close_bidding",
    "requisition.complete_scoring",
    "requisition.restart_item_rfq",
    "quotation.submit",
    "quotation.score",
    # Post-bid review chain
    "award.finalize",
    "award.approve_step",
    "award.reject_step",
    "award.reopen_for_review",
    "award.restart_scoring",
    "award.notify_vendors",
    # Vendor responses
    "award.accept",
    "award.decline",
    "award.expire",
}


class AuditLog(db.Model):
    """
    One row per requisition or award transition, never updated.

    ``details`` is the human-readable sentence;
    ``diff_json`` carries the old→new snapshot of the fields it touched.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_transaction", "transaction_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.String(36), nullable=True,
        comment="Groups every row belonging to one procurement (requisition.transaction_id)",
    )
    entity_type = db.Column(db.String(30), nullable=False, comment="requisition | quotation | …")
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False, comment="award.finalize | requisition.reject | …")
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="User id as string, or 'system' for scheduled jobs",
    )
    details = db.Column(db.Text, nullable=True)
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "details": self.details,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Writer ──────────────────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor="system",
    transaction_id: str | None = None,
    details: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Add one audit row and flush it.  The caller owns the transaction, so
    the row is committed or rolled back with the transition it records.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")

    log = AuditLog(
        transaction_id=transaction_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=str(actor) if actor is not None else "system",
        details=details,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
