"""
Bidding intake: RFQ opening, quotation submission, bid closing and the
hand-off from committee scoring to the award decision.

    open_rfq          PreApproved         → Accepting_Quotes
    submit_quotation  (Accepting_Quotes, before the deadline)
    close_bidding     Accepting_Quotes    → Scoring_In_Progress
    complete_scoring  Scoring_In_Progress → Scoring_Complete

Every call is one transaction and writes one audit row.
"""

from __future__ import annotations

import logging

from award_engine.core.exceptions import (
    ConflictError,
    InvalidTransition,
    Unauthorized,
    ValidationError,
)
from award_engine.models import db
from award_engine.models.audit import write_audit
from award_engine.models.directory import Vendor
from award_engine.models.quotation import Quotation, QuoteItem
from award_engine.services import directory
from award_engine.services.ranking import champion_bids, eligible_quotations, score_breakdowns
from award_engine.services.scoring import scoring_progress, validate_criteria
from award_engine.services.status import AwardStrategy, RequisitionStatus
from award_engine.utils.helpers import (
    as_utc,
    get_or_raise,
    load_requisition_for_update,
    transaction,
    utcnow,
)

logger = logging.getLogger(__name__)


def _require_procurement(req, actor_id: int, action: str) -> None:
    if not directory.is_procurement(directory.user_roles(actor_id)):
        raise Unauthorized(actor_id, action, req.status, required_roles=directory.procurement_role_names())


def _require_status(req, action: str, *allowed: RequisitionStatus) -> None:
    if req.status not in {s.value for s in allowed}:
        raise InvalidTransition(action, req.status, allowed_from=[s.value for s in allowed])


def open_rfq(
    requisition_id: int,
    actor_id: int,
    *,
    deadline,
    award_strategy: str | None = None,
    award_response_deadline=None,
) -> dict:
    """Open a pre-approved requisition for vendor quotations.

    Criteria must be valid here: they freeze the moment bidding opens.
    """
    if award_strategy is not None and award_strategy not in {s.value for s in AwardStrategy}:
        raise ValidationError(
            f"Unknown award strategy '{award_strategy}'",
            details={"allowed": [s.value for s in AwardStrategy]},
        )
    if as_utc(deadline) <= utcnow():
        raise ValidationError("Quotation deadline must be in the future", details={"deadline": str(deadline)})

    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "open_rfq")
        _require_status(req, "open_rfq", RequisitionStatus.PRE_APPROVED)
        validate_criteria(req.evaluation_criteria)

        old_status = req.status
        req.status = RequisitionStatus.ACCEPTING_QUOTES.value
        req.deadline = deadline
        if award_strategy is not None:
            req.award_strategy = award_strategy
        if award_response_deadline is not None:
            req.award_response_deadline = award_response_deadline
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.open_rfq",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=f"RFQ opened ({req.award_strategy}); quotations accepted until {as_utc(deadline).isoformat()}.",
            diff={"status": {"old": old_status, "new": req.status}},
        )
        result = req.to_dict()

    logger.info(
        "RFQ opened",
        extra={"requisition_id": requisition_id, "actor_id": actor_id, "to_status": result["status"]},
    )
    return result


def submit_quotation(requisition_id: int, vendor_id: int, items: list[dict], actor_id: int | None = None) -> dict:
    """Record one vendor's quotation.

    ``items``: ``[{"requisition_item_id", "unit_price", "quantity"?, "name"?}]``.
    Several entries for the same requisition item are alternates.
    """
    get_or_raise(Vendor, vendor_id)
    if not items:
        raise ValidationError("A quotation must contain at least one item")

    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_status(req, "submit_quotation", RequisitionStatus.ACCEPTING_QUOTES)
        if req.deadline and as_utc(req.deadline) <= utcnow():
            raise InvalidTransition("submit_quotation", req.status, reason="quotation deadline has passed")
        if Quotation.query.filter_by(requisition_id=req.id, vendor_id=vendor_id).first():
            raise ConflictError("Quotation", "vendor_id", vendor_id)

        req_items = {i.id: i for i in req.items}
        quote = Quotation(requisition_id=req.id, vendor_id=vendor_id, submitted_at=utcnow())
        for entry in items:
            req_item = req_items.get(entry.get("requisition_item_id"))
            if req_item is None:
                raise ValidationError(
                    f"Requisition item {entry.get('requisition_item_id')} is not part of requisition {req.id}",
                    details={"requisition_item_id": entry.get("requisition_item_id")},
                )
            unit_price = float(entry["unit_price"])
            if unit_price < 0:
                raise ValidationError("Unit price cannot be negative", details={"unit_price": unit_price})
            quote.items.append(QuoteItem(
                requisition_item_id=req_item.id,
                name=entry.get("name") or req_item.name,
                quantity=int(entry.get("quantity", req_item.quantity)),
                unit_price=unit_price,
            ))
        db.session.add(quote)
        db.session.flush()

        write_audit(
            entity_type="quotation",
            entity_id=quote.id,
            action="quotation.submit",
            actor=actor_id if actor_id is not None else "system",
            transaction_id=req.transaction_id,
            details=f"Quotation submitted by vendor {vendor_id} with {len(quote.items)} item(s).",
        )
        result = quote.to_dict()

    logger.info(
        "Quotation submitted",
        extra={"requisition_id": requisition_id, "quotation_id": result["id"], "actor_id": actor_id},
    )
    return result


def close_bidding(requisition_id: int, actor_id: int) -> dict:
    """Stop accepting quotations and open committee scoring."""
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "close_bidding")
        _require_status(req, "close_bidding", RequisitionStatus.ACCEPTING_QUOTES)
        if not req.quotations:
            raise ValidationError("Cannot close bidding: no quotations were received")

        old_status = req.status
        req.status = RequisitionStatus.SCORING_IN_PROGRESS.value
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.close_bidding",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=f"Bidding closed with {len(req.quotations)} quotation(s); committee scoring opened.",
            diff={"status": {"old": old_status, "new": req.status}},
        )
        result = req.to_dict()
    return result


def complete_scoring(requisition_id: int, actor_id: int) -> dict:
    """Close committee scoring once every member has scored every quotation.

    Stores each quotation's ``final_average_score`` (mean of its champion
    bid scores) for display.
    """
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "complete_scoring")
        _require_status(req, "complete_scoring", RequisitionStatus.SCORING_IN_PROGRESS)

        progress = scoring_progress(req)
        if not progress["complete"]:
            raise ValidationError(
                "Scoring is incomplete: not every committee member has scored every quotation",
                details={"members": [m for m in progress["members"] if m["missing_quotation_ids"]]},
            )

        criteria = validate_criteria(req.evaluation_criteria)
        quotations = eligible_quotations(req.quotations)
        champions = champion_bids(req.items, quotations, score_breakdowns(criteria, quotations))
        for quote in quotations:
            scores = [b.score for bids in champions.values() for b in bids if b.quotation_id == quote.id]
            quote.final_average_score = sum(scores) / len(scores) if scores else 0.0

        old_status = req.status
        req.status = RequisitionStatus.SCORING_COMPLETE.value
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.complete_scoring",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=f"Committee scoring completed for {len(quotations)} quotation(s).",
            diff={"status": {"old": old_status, "new": req.status}},
        )
        result = req.to_dict()

    logger.info("Scoring completed", extra={"requisition_id": requisition_id, "actor_id": actor_id})
    return result
