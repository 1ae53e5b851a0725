"""
Award Engine
Bid and evaluation models.

Models:
    - Quotation:          one vendor's bid on a requisition (one per vendor)
    - QuoteItem:          priced proposal for one requisition item; a vendor
                          may submit several alternates for the same item
    - CommitteeScoreSet:  one scorer's evaluation of one quotation
    - ItemScore:          one scorer's scores for one QuoteItem
    - Score:              a single criterion score in [0, 100]
    - PerItemAwardDetail: award outcome rows for the per-item strategy

Architecture:
    Quotation ──1:N──▶ QuoteItem
    Quotation ──1:N──▶ CommitteeScoreSet ──1:N──▶ ItemScore ──1:N──▶ Score
    Requisition ──1:N──▶ PerItemAwardDetail (winner + standbys + history)
"""

from datetime import datetime, timezone

from award_engine.models import db
from award_engine.services.status import QuotationStatus


class Quotation(db.Model):
    __tablename__ = "quotations"
    __table_args__ = (
        db.UniqueConstraint("requisition_id", "vendor_id", name="uq_quotation_requisition_vendor"),
    )

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=QuotationStatus.SUBMITTED.value)
    rank = db.Column(db.Integer, nullable=True, comment="1-based; NULL when unranked")
    final_average_score = db.Column(db.Float, nullable=True)
    response_deadline = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Single-vendor strategy: when an Awarded offer lapses",
    )
    decline_reason = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    vendor = db.relationship("Vendor", lazy="joined")
    items = db.relationship(
        "QuoteItem", backref="quotation", cascade="all, delete-orphan",
        order_by="QuoteItem.id", lazy="selectin",
    )
    scores = db.relationship(
        "CommitteeScoreSet", backref="quotation", cascade="all, delete-orphan",
        order_by="CommitteeScoreSet.id", lazy="selectin",
    )

    @property
    def vendor_name(self) -> str | None:
        return self.vendor.name if self.vendor else None

    def to_dict(self):
        return {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "status": self.status,
            "rank": self.rank,
            "final_average_score": self.final_average_score,
            "response_deadline": self.response_deadline.isoformat() if self.response_deadline else None,
            "decline_reason": self.decline_reason,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "items": [i.to_dict() for i in self.items],
        }

    def __repr__(self):
        return f"<Quotation {self.id}: vendor={self.vendor_id} {self.status}>"


class QuoteItem(db.Model):
    __tablename__ = "quote_items"

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    requisition_item_id = db.Column(
        db.Integer, db.ForeignKey("requisition_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=False)

    @property
    def total_price(self) -> float:
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "requisition_item_id": self.requisition_item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }

    def __repr__(self):
        return f"<QuoteItem {self.id}: {self.name} @ {self.unit_price}>"


class CommitteeScoreSet(db.Model):
    """One scorer's complete evaluation of one quotation.

    Created at most once per (scorer, quotation); later submissions update
    it in place until ``is_locked`` is set by award finalization.
    """

    __tablename__ = "committee_score_sets"
    __table_args__ = (
        db.UniqueConstraint("quotation_id", "scorer_id", name="uq_score_set_quotation_scorer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    scorer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    committee_comment = db.Column(db.Text, nullable=True)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    submitted_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    item_scores = db.relationship(
        "ItemScore", backref="score_set", cascade="all, delete-orphan",
        order_by="ItemScore.id", lazy="selectin",
    )

    def item_score_for(self, quote_item_id: int) -> "ItemScore | None":
        for item_score in self.item_scores:
            if item_score.quote_item_id == quote_item_id:
                return item_score
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "scorer_id": self.scorer_id,
            "committee_comment": self.committee_comment,
            "is_locked": self.is_locked,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "item_scores": [i.to_dict() for i in self.item_scores],
        }

    def __repr__(self):
        return f"<CommitteeScoreSet {self.id}: quote={self.quotation_id} scorer={self.scorer_id}>"


class ItemScore(db.Model):
    __tablename__ = "item_scores"
    __table_args__ = (
        db.UniqueConstraint("score_set_id", "quote_item_id", name="uq_item_score_set_item"),
    )

    id = db.Column(db.Integer, primary_key=True)
    score_set_id = db.Column(
        db.Integer, db.ForeignKey("committee_score_sets.id", ondelete="CASCADE"), nullable=False,
    )
    quote_item_id = db.Column(
        db.Integer, db.ForeignKey("quote_items.id", ondelete="CASCADE"), nullable=False,
    )

    scores = db.relationship(
        "Score", backref="item_score", cascade="all, delete-orphan",
        order_by="Score.id", lazy="selectin",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "quote_item_id": self.quote_item_id,
            "scores": [s.to_dict() for s in self.scores],
        }

    def __repr__(self):
        return f"<ItemScore {self.id}: quote_item={self.quote_item_id}>"


class Score(db.Model):
    __tablename__ = "scores"
    __table_args__ = (
        db.CheckConstraint("score >= 0 AND score <= 100", name="ck_score_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_score_id = db.Column(
        db.Integer, db.ForeignKey("item_scores.id", ondelete="CASCADE"), nullable=False,
    )
    criterion_id = db.Column(db.Integer, db.ForeignKey("criteria.id", ondelete="CASCADE"), nullable=False)
    score = db.Column(db.Float, nullable=False)
    comment = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {"id": self.id, "criterion_id": self.criterion_id, "score": self.score, "comment": self.comment}

    def __repr__(self):
        return f"<Score criterion={self.criterion_id} {self.score}>"


class PerItemAwardDetail(db.Model):
    """Per-item award outcome.

    Rows are written at finalization (winner + standbys) and changed only
    by vendor accept/decline, response-deadline expiry and standby
    promotion.  Declined rows are kept as history.
    """

    __tablename__ = "per_item_award_details"
    __table_args__ = (
        db.Index("ix_award_detail_req_item", "requisition_id", "requisition_item_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False,
    )
    requisition_item_id = db.Column(
        db.Integer, db.ForeignKey("requisition_items.id", ondelete="CASCADE"), nullable=False,
    )
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False)
    quote_item_id = db.Column(db.Integer, db.ForeignKey("quote_items.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    rank = db.Column(db.Integer, nullable=True)
    score = db.Column(db.Float, nullable=True)
    response_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    decline_reason = db.Column(db.Text, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "requisition_item_id": self.requisition_item_id,
            "vendor_id": self.vendor_id,
            "quotation_id": self.quotation_id,
            "quote_item_id": self.quote_item_id,
            "status": self.status,
            "rank": self.rank,
            "score": self.score,
            "response_deadline": self.response_deadline.isoformat() if self.response_deadline else None,
            "decline_reason": self.decline_reason,
        }

    def __repr__(self):
        return f"<PerItemAwardDetail item={self.requisition_item_id} vendor={self.vendor_id} {self.status}>"
