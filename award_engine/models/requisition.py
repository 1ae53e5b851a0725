"""
Award Engine
Requisition domain models.

Models:
    - Requisition:         procurement request, the aggregate root every
                           transition locks and mutates
    - RequisitionItem:     ordered line (name, quantity, unit price)
    - EvaluationCriteria:  1:1 weighting of financial vs technical scores
    - Criterion:           named, weighted sub-criterion of one category
    - CommitteeAssignment: evaluation committee membership (financial or
                           technical; a user sits on at most one)

Architecture:
    Requisition ──1:N──▶ RequisitionItem
    Requisition ──1:1──▶ EvaluationCriteria ──1:N──▶ Criterion
    Requisition ──1:N──▶ CommitteeAssignment
    Requisition ──1:N──▶ Quotation            (models/quotation.py)

Lifecycle:
    Draft → Pending_Approval → PreApproved → Accepting_Quotes
    → Scoring_In_Progress → Scoring_Complete → Pending_<Role>… → PostApproved
    → Awarded → Ready_For_PO | Partially_Closed | Award_Declined
"""

import uuid
from datetime import datetime, timezone

from award_engine.models import db
from award_engine.services.status import AwardStrategy, RequisitionStatus

CRITERION_CATEGORIES = ("financial", "technical")


class Requisition(db.Model):
    """
    Procurement request and aggregate root.

    Concurrency: ``version`` is the mapper's version counter, so two
    sessions that both read-then-write the same row cannot both commit.
    """

    __tablename__ = "requisitions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.String(36), nullable=False, default=lambda: str(uuid.uuid4()),
        comment="Shared by every audit row of this procurement",
    )
    title = db.Column(db.String(255), nullable=False)
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)

    status = db.Column(db.String(80), nullable=False, default=RequisitionStatus.DRAFT.value, index=True)
    current_approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_comment = db.Column(db.Text, nullable=True)

    award_strategy = db.Column(db.String(20), nullable=False, default=AwardStrategy.SINGLE_VENDOR.value)
    deadline = db.Column(db.DateTime(timezone=True), nullable=True, comment="Quote submission cutoff")
    scoring_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    award_response_deadline = db.Column(db.DateTime(timezone=True), nullable=True)

    awarded_quote_item_ids = db.Column(db.JSON, nullable=False, default=list)
    review_chain = db.Column(
        db.JSON, nullable=True,
        comment="Ordered reviewing roles snapshotted at finalize time",
    )
    total_award_value = db.Column(db.Float, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = db.relationship(
        "RequisitionItem", backref="requisition", cascade="all, delete-orphan",
        order_by="RequisitionItem.id", lazy="selectin",
    )
    evaluation_criteria = db.relationship(
        "EvaluationCriteria", backref="requisition", uselist=False, cascade="all, delete-orphan",
    )
    committee_assignments = db.relationship(
        "CommitteeAssignment", backref="requisition", cascade="all, delete-orphan", lazy="selectin",
    )
    quotations = db.relationship(
        "Quotation", backref="requisition", cascade="all, delete-orphan",
        order_by="Quotation.submitted_at, Quotation.id",
    )
    award_details = db.relationship(
        "PerItemAwardDetail", backref="requisition", cascade="all, delete-orphan",
        order_by="PerItemAwardDetail.id",
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Helpers ──────────────────────────────────────────────────────────

    def committee_member_ids(self, committee: str) -> list[int]:
        return [a.user_id for a in self.committee_assignments if a.committee == committee]

    @property
    def financial_committee_member_ids(self) -> list[int]:
        return self.committee_member_ids("financial")

    @property
    def technical_committee_member_ids(self) -> list[int]:
        return self.committee_member_ids("technical")

    def committee_of(self, user_id: int) -> str | None:
        for a in self.committee_assignments:
            if a.user_id == user_id:
                return a.committee
        return None

    def to_dict(self, include_children: bool = False) -> dict:
        d = {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "title": self.title,
            "requester_id": self.requester_id,
            "department_id": self.department_id,
            "status": self.status,
            "current_approver_id": self.current_approver_id,
            "approver_comment": self.approver_comment,
            "award_strategy": self.award_strategy,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "scoring_deadline": self.scoring_deadline.isoformat() if self.scoring_deadline else None,
            "award_response_deadline": (
                self.award_response_deadline.isoformat() if self.award_response_deadline else None
            ),
            "financial_committee_member_ids": self.financial_committee_member_ids,
            "technical_committee_member_ids": self.technical_committee_member_ids,
            "awarded_quote_item_ids": list(self.awarded_quote_item_ids or []),
            "review_chain": list(self.review_chain or []),
            "total_award_value": self.total_award_value,
            "version": self.version,
        }
        if include_children:
            d["items"] = [i.to_dict() for i in self.items]
            d["evaluation_criteria"] = (
                self.evaluation_criteria.to_dict() if self.evaluation_criteria else None
            )
        return d

    def __repr__(self):
        return f"<Requisition {self.id}: {self.status}>"


class RequisitionItem(db.Model):
    __tablename__ = "requisition_items"

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=True, comment="Requester's estimate")

    def to_dict(self):
        return {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }

    def __repr__(self):
        return f"<RequisitionItem {self.id}: {self.name} x{self.quantity}>"


class EvaluationCriteria(db.Model):
    """Financial/technical weighting; frozen once bidding opens."""

    __tablename__ = "evaluation_criteria"

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    financial_weight = db.Column(db.Float, nullable=False)
    technical_weight = db.Column(db.Float, nullable=False)

    criteria = db.relationship(
        "Criterion", backref="evaluation_criteria", cascade="all, delete-orphan",
        order_by="Criterion.id", lazy="selectin",
    )

    @property
    def financial_criteria(self) -> list["Criterion"]:
        return [c for c in self.criteria if c.category == "financial"]

    @property
    def technical_criteria(self) -> list["Criterion"]:
        return [c for c in self.criteria if c.category == "technical"]

    def category_weight(self, category: str) -> float:
        return self.financial_weight if category == "financial" else self.technical_weight

    def to_dict(self):
        return {
            "id": self.id,
            "financial_weight": self.financial_weight,
            "technical_weight": self.technical_weight,
            "financial_criteria": [c.to_dict() for c in self.financial_criteria],
            "technical_criteria": [c.to_dict() for c in self.technical_criteria],
        }

    def __repr__(self):
        return f"<EvaluationCriteria req={self.requisition_id} {self.financial_weight}/{self.technical_weight}>"


class Criterion(db.Model):
    __tablename__ = "criteria"

    id = db.Column(db.Integer, primary_key=True)
    evaluation_criteria_id = db.Column(
        db.Integer, db.ForeignKey("evaluation_criteria.id", ondelete="CASCADE"), nullable=False,
    )
    category = db.Column(db.String(20), nullable=False, comment="financial | technical")
    name = db.Column(db.String(150), nullable=False)
    weight = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {"id": self.id, "category": self.category, "name": self.name, "weight": self.weight}

    def __repr__(self):
        return f"<Criterion {self.category}:{self.name} w={self.weight}>"


class CommitteeAssignment(db.Model):
    """A user's seat on one evaluation committee of one requisition.

    The composite primary key keeps the financial and technical committees
    disjoint.
    """

    __tablename__ = "committee_assignments"

    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    committee = db.Column(db.String(20), nullable=False, comment="financial | technical")

    def __repr__(self):
        return f"<CommitteeAssignment req={self.requisition_id} user={self.user_id} {self.committee}>"
