"""
Award Lifecycle Controller.

Persists the award decision and drives it to a purchase-order-ready
outcome:

    finalize_award          Scoring_Complete  → Pending_<FirstRole> | PostApproved
    notify_vendors          PostApproved      → Awarded
    respond_to_award        Awarded | Partially_Closed
                              accept  → Ready_For_PO | Partially_Closed | Awarded
                              decline → standby promotion | Award_Declined
    expire_award_deadlines  overdue offers are declined by "system"
    reopen_for_review       Award_Declined    → Pending_<FirstRole> | PostApproved
    restart_scoring         Award_Declined    → Scoring_In_Progress
    restart_item_rfq        Partially_Closed | Award_Declined → Accepting_Quotes (failed items)

Standby promotion always re-runs the ranking over the vendors still
eligible; stored standby rows are only the last ranking's snapshot.

Per-item settling (after every response):
    every item accepted                        → Ready_For_PO
    some accepted, others pending or failed    → Partially_Closed
    every item failed                          → Award_Declined
    otherwise                                  → Awarded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app

from award_engine.core.exceptions import InvalidTransition, Unauthorized, ValidationError
from award_engine.models import db
from award_engine.models.audit import write_audit
from award_engine.models.directory import Vendor
from award_engine.models.quotation import PerItemAwardDetail, Quotation, QuoteItem
from award_engine.models.requisition import Requisition
from award_engine.services import approval_chain, directory, notifications
from award_engine.services.notifications import Notification
from award_engine.services.ranking import DEFAULT_STANDBY_LIMIT, compute_award_views
from award_engine.services.scoring import validate_criteria
from award_engine.services.status import (
    AwardDetailStatus,
    AwardStrategy,
    QuotationStatus,
    RequisitionStatus,
)
from award_engine.utils.helpers import (
    as_utc,
    get_or_raise,
    load_requisition_for_update,
    transaction,
    utcnow,
)

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
PROMOTED = "promoted"
EXHAUSTED_STANDBYS = "exhausted_standbys"

EXPIRED_REASON = "response deadline expired"

_RESPONDING = (RequisitionStatus.AWARDED, RequisitionStatus.PARTIALLY_CLOSED)


@dataclass
class AwardResponseResult:
    """Outcome of an accept, decline or expiry.

    ``outcome`` is ``"accepted"``, ``"promoted"`` or ``"exhausted_standbys"``
    (no candidate was left for at least one declined award).
    """

    requisition_id: int
    outcome: str
    status: str
    promoted: list[dict] = field(default_factory=list)
    failed_item_ids: list[int] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)

    @property
    def exhausted_standbys(self) -> bool:
        return self.outcome == EXHAUSTED_STANDBYS

    def to_dict(self) -> dict:
        return {
            "requisition_id": self.requisition_id,
            "outcome": self.outcome,
            "status": self.status,
            "promoted": list(self.promoted),
            "failed_item_ids": list(self.failed_item_ids),
            "notifications": [n.to_dict() for n in self.notifications],
        }


# ── Helpers ──────────────────────────────────────────────────────────────────

def _standby_limit() -> int:
    return int(current_app.config.get("AWARD_STANDBY_LIMIT", DEFAULT_STANDBY_LIMIT))


def _fresh_deadline(now):
    return now + timedelta(hours=int(current_app.config.get("AWARD_RESPONSE_WINDOW_HOURS", 72)))


def _require_procurement(req, actor_id: int, action: str) -> None:
    if not directory.is_procurement(directory.user_roles(actor_id)):
        raise Unauthorized(actor_id, action, req.status, required_roles=directory.procurement_role_names())


def _require_status(req, action: str, *allowed: RequisitionStatus) -> None:
    if req.status not in {s.value for s in allowed}:
        raise InvalidTransition(action, req.status, allowed_from=[s.value for s in allowed])


def _is_per_item(req) -> bool:
    return req.award_strategy == AwardStrategy.PER_ITEM.value


def _awarded_quotation(req) -> Quotation | None:
    for quote in req.quotations:
        if quote.status == QuotationStatus.AWARDED.value:
            return quote
    return None


def _detail(req, bid, rank: int, status: AwardDetailStatus, deadline=None) -> PerItemAwardDetail:
    return PerItemAwardDetail(
        requisition_id=req.id,
        requisition_item_id=bid.requisition_item_id,
        vendor_id=bid.vendor_id,
        quotation_id=bid.quotation_id,
        quote_item_id=bid.quote_item_id,
        status=status.value,
        rank=rank,
        score=bid.score,
        response_deadline=deadline,
    )


def _per_item_exclusions(req) -> set[tuple[int, int]]:
    """(item, vendor) pairs that lost an item by declining or letting it lapse."""
    closed = {AwardDetailStatus.DECLINED.value, AwardDetailStatus.FAILED_TO_AWARD.value}
    return {(d.requisition_item_id, d.vendor_id) for d in req.award_details if d.status in closed}


def _refresh_awarded_ids(req) -> None:
    live = {AwardDetailStatus.AWARDED.value, AwardDetailStatus.ACCEPTED.value}
    req.awarded_quote_item_ids = [d.quote_item_id for d in req.award_details if d.status in live]


def _sync_per_item_quotations(req) -> None:
    """Derive each quotation's status and best rank from its award details."""
    item_count = len(req.items)
    active = {
        AwardDetailStatus.AWARDED.value,
        AwardDetailStatus.ACCEPTED.value,
        AwardDetailStatus.STANDBY.value,
    }
    lost = {AwardDetailStatus.DECLINED.value, AwardDetailStatus.FAILED_TO_AWARD.value}
    for quote in req.quotations:
        if quote.status == QuotationStatus.DECLINED.value:
            continue
        mine = [d for d in req.award_details if d.quotation_id == quote.id]
        statuses = {d.status for d in mine}
        won_items = {
            d.requisition_item_id for d in mine
            if d.status in (AwardDetailStatus.AWARDED.value, AwardDetailStatus.ACCEPTED.value)
        }
        if AwardDetailStatus.AWARDED.value in statuses:
            full = len(won_items) == item_count
            quote.status = (QuotationStatus.AWARDED if full else QuotationStatus.PARTIALLY_AWARDED).value
        elif AwardDetailStatus.ACCEPTED.value in statuses:
            quote.status = QuotationStatus.ACCEPTED.value
        elif AwardDetailStatus.STANDBY.value in statuses:
            quote.status = QuotationStatus.STANDBY.value
        elif statuses & lost:
            quote.status = QuotationStatus.DECLINED.value
        else:
            quote.status = QuotationStatus.REJECTED.value
        quote.rank = min((d.rank for d in mine if d.status in active and d.rank), default=None)


def _settle_per_item(req) -> None:
    accepted = pending = failed = 0
    for item in req.items:
        statuses = {d.status for d in req.award_details if d.requisition_item_id == item.id}
        if AwardDetailStatus.ACCEPTED.value in statuses:
            accepted += 1
        elif statuses & {AwardDetailStatus.AWARDED.value, AwardDetailStatus.STANDBY.value}:
            pending += 1
        else:
            failed += 1
    total = len(req.items)
    if accepted == total:
        status = RequisitionStatus.READY_FOR_PO
    elif accepted:
        status = RequisitionStatus.PARTIALLY_CLOSED
    elif failed == total:
        status = RequisitionStatus.AWARD_DECLINED
    else:
        status = RequisitionStatus.AWARDED
    req.status = status.value
    req.current_approver_id = None


def _apply_single_vendor(req, view, limit: int, offer_deadline=None) -> None:
    """Winner Awarded rank 1, next ``limit`` Standby, every other eligible quote Rejected."""
    ranks = {v.quotation_id: i for i, v in enumerate(view.ranked_vendors, start=1)}
    for quote in req.quotations:
        if quote.status == QuotationStatus.DECLINED.value:
            continue
        rank = ranks.get(quote.id)
        quote.response_deadline = None
        if rank == 1:
            quote.status = QuotationStatus.AWARDED.value
            quote.rank = 1
            quote.response_deadline = offer_deadline
        elif rank is not None and rank <= 1 + limit:
            quote.status = QuotationStatus.STANDBY.value
            quote.rank = rank
        else:
            quote.status = QuotationStatus.REJECTED.value
            quote.rank = None
    req.awarded_quote_item_ids = [b.quote_item_id for b in view.winner.champion_bids]
    req.total_award_value = view.award_value


def _apply_per_item(req, rankings, offer_deadline=None) -> None:
    rewritten = {r.requisition_item_id for r in rankings}
    replaceable = {AwardDetailStatus.AWARDED.value, AwardDetailStatus.STANDBY.value}
    for detail in list(req.award_details):
        if detail.requisition_item_id in rewritten and detail.status in replaceable:
            req.award_details.remove(detail)
    for ranking in rankings:
        if ranking.winner is None:
            continue
        req.award_details.append(_detail(req, ranking.winner, 1, AwardDetailStatus.AWARDED, offer_deadline))
        for rank, bid in enumerate(ranking.standbys, start=2):
            req.award_details.append(_detail(req, bid, rank, AwardDetailStatus.STANDBY))
    _refresh_awarded_ids(req)
    _sync_per_item_quotations(req)


def _audit(req, action: str, actor, details: str, old_status: str, **diff) -> None:
    write_audit(
        entity_type="requisition",
        entity_id=req.id,
        action=action,
        actor=actor,
        transaction_id=req.transaction_id,
        details=details,
        diff={"status": {"old": old_status, "new": req.status}, **diff},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Views & finalization
# ═════════════════════════════════════════════════════════════════════════════

def award_views(requisition_id: int) -> dict:
    """Both award views for display; read-only."""
    req = get_or_raise(Requisition, requisition_id)
    exclude = _per_item_exclusions(req)
    return compute_award_views(req, exclude=exclude, standby_limit=_standby_limit()).to_dict()


def finalize_award(
    requisition_id: int,
    actor_id: int,
    *,
    strategy: str | None = None,
    award_response_deadline=None,
) -> dict:
    """
    Persist the award decision and send it into the review chain.

    Per-item: items already accepted keep their award; every other item gets
    a fresh winner (Awarded) and standbys.  Single-vendor: the top vendor is
    Awarded, the next ones Standby, the rest Rejected.  Score sets consumed
    by the decision are locked.

    Returns:
        {"requisition": dict, "strategy": str, "award_views": dict,
         "notifications": [Notification, ...]}

    Raises:
        IncompleteEvaluationData: criteria missing or malformed.
        ValidationError: nothing to award, no approval tier, or a review
            role nobody holds.
    """
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "finalize_award")
        _require_status(req, "finalize_award", RequisitionStatus.SCORING_COMPLETE)

        strategy = strategy or req.award_strategy
        if strategy not in {s.value for s in AwardStrategy}:
            raise ValidationError(
                f"Unknown award strategy '{strategy}'", details={"allowed": [s.value for s in AwardStrategy]},
            )
        validate_criteria(req.evaluation_criteria)
        limit = _standby_limit()

        if strategy == AwardStrategy.PER_ITEM.value:
            views = compute_award_views(req, exclude=_per_item_exclusions(req), standby_limit=limit)
            accepted = {
                d.requisition_item_id for d in req.award_details
                if d.status == AwardDetailStatus.ACCEPTED.value
            }
            rankings = [r for r in views.per_item.items if r.requisition_item_id not in accepted]
            winners = [r.winner for r in rankings if r.winner is not None]
            award_value = sum(b.total_price for b in winners)
        else:
            views = compute_award_views(req, standby_limit=limit)
            winners = [views.single_vendor.winner] if views.single_vendor.winner else []
            award_value = views.single_vendor.award_value
        if not winners:
            raise ValidationError(
                "No eligible bids to award",
                details={"unawardable_item_ids": views.per_item.unawardable_item_ids},
            )

        chain = directory.review_chain(award_value)
        step = approval_chain.enter_chain(chain, directory.resolve_role_holders)

        old_status = req.status
        req.award_strategy = strategy
        if strategy == AwardStrategy.PER_ITEM.value:
            _apply_per_item(req, rankings)
            req.total_award_value = award_value
        else:
            _apply_single_vendor(req, views.single_vendor, limit)
        if award_response_deadline is not None:
            req.award_response_deadline = award_response_deadline
        for quote in req.quotations:
            for score_set in quote.scores:
                score_set.is_locked = True
        req.review_chain = list(chain)
        req.status = step.status
        req.current_approver_id = step.approver_id
        db.session.flush()

        _audit(
            req, "award.finalize", actor_id,
            f"Award finalized ({strategy}), value {award_value:,.2f}. {step.details}",
            old_status,
            awarded_quote_item_ids=req.awarded_quote_item_ids,
            review_chain=req.review_chain,
        )
        notes = notifications.for_review_step(req, step, notifications.REVIEW_REQUESTED)
        result = {
            "requisition": req.to_dict(),
            "strategy": strategy,
            "award_views": views.to_dict(),
            "notifications": notes,
        }

    logger.info(
        "Award finalized",
        extra={
            "requisition_id": requisition_id,
            "actor_id": actor_id,
            "strategy": strategy,
            "from_status": old_status,
            "to_status": result["requisition"]["status"],
        },
    )
    return result


def notify_vendors(requisition_id: int, actor_id: int) -> dict:
    """Send the approved award offers and start each offer's response clock."""
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "notify_vendors")
        _require_status(req, "notify_vendors", RequisitionStatus.POST_APPROVED)

        now = utcnow()
        configured = as_utc(req.award_response_deadline)
        deadline = configured if configured and configured > now else _fresh_deadline(now)

        notes = []
        if _is_per_item(req):
            offers: dict[int, list[int]] = {}
            for detail in req.award_details:
                if detail.status == AwardDetailStatus.AWARDED.value:
                    detail.response_deadline = deadline
                    offers.setdefault(detail.vendor_id, []).append(detail.quote_item_id)
            if not offers:
                raise ValidationError("No awarded items to notify")
            for vendor_id, quote_item_ids in offers.items():
                notes.append(notifications.award_offer(req, vendor_id, quote_item_ids, deadline))
        else:
            winner = _awarded_quotation(req)
            if winner is None:
                raise ValidationError("No awarded quotation to notify")
            winner.response_deadline = deadline
            notes.append(notifications.award_offer(req, winner.vendor_id, req.awarded_quote_item_ids, deadline))

        old_status = req.status
        req.award_response_deadline = deadline
        req.status = RequisitionStatus.AWARDED.value
        req.current_approver_id = None
        db.session.flush()

        _audit(
            req, "award.notify_vendors", actor_id,
            f"Award offers sent to {len(notes)} vendor(s); responses due {deadline.isoformat()}.",
            old_status,
        )
        result = {"requisition": req.to_dict(), "notifications": notes}

    logger.info("Vendors notified", extra={"requisition_id": requisition_id, "actor_id": actor_id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Vendor responses & standby promotion
# ═════════════════════════════════════════════════════════════════════════════

def _accept_single(req, quote, actor) -> AwardResponseResult:
    old_status = req.status
    quote.status = QuotationStatus.ACCEPTED.value
    quote.response_deadline = None
    req.status = RequisitionStatus.READY_FOR_PO.value
    req.current_approver_id = None
    db.session.flush()
    _audit(req, "award.accept", actor, f"Vendor {quote.vendor_id} accepted the award.", old_status)
    note = notifications.to_procurement(
        notifications.AWARD_ACCEPTED, {"requisition_id": req.id, "vendor_id": quote.vendor_id},
    )
    return AwardResponseResult(req.id, ACCEPTED, req.status, notifications=[note])


def _decline_single(req, quote, reason, actor, now, audit_action: str) -> AwardResponseResult:
    old_status = req.status
    declined_vendor = quote.vendor_id
    quote.status = QuotationStatus.DECLINED.value
    quote.decline_reason = reason
    quote.rank = None
    quote.response_deadline = None
    db.session.flush()

    limit = _standby_limit()
    view = compute_award_views(req, standby_limit=limit).single_vendor
    if view.winner is None:
        req.status = RequisitionStatus.AWARD_DECLINED.value
        req.current_approver_id = None
        req.awarded_quote_item_ids = []
        db.session.flush()
        _audit(
            req, audit_action, actor,
            f"Vendor {declined_vendor} declined ({reason}); no standby remains.", old_status,
        )
        note = notifications.to_procurement(
            notifications.AWARD_EXHAUSTED, {"requisition_id": req.id, "declined_vendor_id": declined_vendor},
        )
        return AwardResponseResult(req.id, EXHAUSTED_STANDBYS, req.status, notifications=[note])

    deadline = _fresh_deadline(now)
    _apply_single_vendor(req, view, limit, offer_deadline=deadline)
    req.award_response_deadline = deadline
    db.session.flush()
    winner = view.winner
    _audit(
        req, audit_action, actor,
        f"Vendor {declined_vendor} declined ({reason}); standby vendor {winner.vendor_id} promoted.",
        old_status,
        promoted_quotation_id=winner.quotation_id,
    )
    return AwardResponseResult(
        req.id, PROMOTED, req.status,
        promoted=[{"vendor_id": winner.vendor_id, "quotation_id": winner.quotation_id}],
        notifications=[notifications.award_offer(req, winner.vendor_id, req.awarded_quote_item_ids, deadline)],
    )


def _promote_item(req, item_id: int, deadline, limit: int):
    """Re-rank one item without its declined vendors; return the new winner or None."""
    views = compute_award_views(req, exclude=_per_item_exclusions(req), standby_limit=limit)
    ranking = views.per_item.for_item(item_id)
    for detail in list(req.award_details):
        if detail.requisition_item_id == item_id and detail.status in (
            AwardDetailStatus.AWARDED.value, AwardDetailStatus.STANDBY.value,
        ):
            req.award_details.remove(detail)

    if ranking is None or ranking.no_eligible_bids:
        declined = [
            d for d in req.award_details
            if d.requisition_item_id == item_id and d.status == AwardDetailStatus.DECLINED.value
        ]
        if declined:
            max(declined, key=lambda d: d.id).status = AwardDetailStatus.FAILED_TO_AWARD.value
        return None

    req.award_details.append(
        _detail(req, ranking.winner, 1, AwardDetailStatus.AWARDED, deadline)
    )
    for rank, bid in enumerate(ranking.standbys, start=2):
        req.award_details.append(_detail(req, bid, rank, AwardDetailStatus.STANDBY))
    return ranking.winner


def _accept_items(req, details, actor) -> AwardResponseResult:
    old_status = req.status
    for detail in details:
        detail.status = AwardDetailStatus.ACCEPTED.value
        detail.response_deadline = None
    _refresh_awarded_ids(req)
    _sync_per_item_quotations(req)
    _settle_per_item(req)
    db.session.flush()
    vendor_id = details[0].vendor_id
    item_ids = sorted(d.requisition_item_id for d in details)
    _audit(
        req, "award.accept", actor,
        f"Vendor {vendor_id} accepted item(s) {item_ids}.", old_status, accepted_item_ids=item_ids,
    )
    note = notifications.to_procurement(
        notifications.AWARD_ACCEPTED, {"requisition_id": req.id, "vendor_id": vendor_id, "item_ids": item_ids},
    )
    return AwardResponseResult(req.id, ACCEPTED, req.status, notifications=[note])


def _decline_items(req, details, reason, actor, now, audit_action: str) -> AwardResponseResult:
    old_status = req.status
    for detail in details:
        detail.status = AwardDetailStatus.DECLINED.value
        detail.decline_reason = reason
        detail.response_deadline = None
    db.session.flush()

    limit = _standby_limit()
    deadline = _fresh_deadline(now)
    promoted, failed = [], []
    for item_id in sorted({d.requisition_item_id for d in details}):
        winner = _promote_item(req, item_id, deadline, limit)
        db.session.flush()
        if winner is None:
            failed.append(item_id)
        else:
            promoted.append(winner)

    _refresh_awarded_ids(req)
    _sync_per_item_quotations(req)
    _settle_per_item(req)
    if promoted:
        req.award_response_deadline = deadline
    db.session.flush()

    offers: dict[int, list[int]] = {}
    for bid in promoted:
        offers.setdefault(bid.vendor_id, []).append(bid.quote_item_id)
    notes = [notifications.award_offer(req, v, qi, deadline) for v, qi in offers.items()]
    if failed:
        notes.append(notifications.to_procurement(
            notifications.AWARD_EXHAUSTED, {"requisition_id": req.id, "failed_item_ids": failed},
        ))

    vendors = sorted({d.vendor_id for d in details})
    summary = f"Vendor(s) {vendors} declined ({reason})"
    if promoted:
        summary += "; promoted " + ", ".join(f"vendor {b.vendor_id} on item {b.requisition_item_id}" for b in promoted)
    if failed:
        summary += f"; no standby remains for item(s) {failed}"
    _audit(
        req, audit_action, actor, summary + ".", old_status,
        promoted=[b.to_dict() for b in promoted], failed_item_ids=failed,
    )
    return AwardResponseResult(
        req.id,
        EXHAUSTED_STANDBYS if failed else PROMOTED,
        req.status,
        promoted=[
            {"requisition_item_id": b.requisition_item_id, "vendor_id": b.vendor_id, "quotation_id": b.quotation_id}
            for b in promoted
        ],
        failed_item_ids=failed,
        notifications=notes,
    )


def respond_to_award(
    quotation_id: int,
    actor_id: int,
    decision: str,
    *,
    quote_item_id: int | None = None,
    reason: str | None = None,
) -> AwardResponseResult:
    """
    A vendor accepts or declines its award.

    Per-item awards may be answered one item at a time by passing the
    ``quote_item_id`` of the offer; without it every open offer of the
    vendor is answered at once.  A decline promotes the next eligible bid.
    """
    if decision not in ("accept", "decline"):
        raise ValidationError(f"Unknown decision '{decision}'", details={"allowed": ["accept", "decline"]})
    quote = get_or_raise(Quotation, quotation_id)

    with transaction():
        req = load_requisition_for_update(quote.requisition_id)
        _require_status(req, decision, *_RESPONDING)
        if directory.user_vendor_id(actor_id) != quote.vendor_id:
            raise Unauthorized(actor_id, decision, req.status, required_roles=[f"Vendor {quote.vendor_id}"])
        now = utcnow()

        if _is_per_item(req):
            item_filter = None
            if quote_item_id is not None:
                quote_item = get_or_raise(QuoteItem, quote_item_id)
                if quote_item.quotation_id != quote.id:
                    raise ValidationError(
                        f"Quote item {quote_item_id} does not belong to quotation {quote.id}",
                        details={"quote_item_id": quote_item_id},
                    )
                item_filter = quote_item.requisition_item_id
            details = [
                d for d in req.award_details
                if d.vendor_id == quote.vendor_id
                and d.status == AwardDetailStatus.AWARDED.value
                and (item_filter is None or d.requisition_item_id == item_filter)
            ]
            if not details:
                raise InvalidTransition(decision, req.status, reason="vendor has no open award offer")
            if decision == "accept":
                result = _accept_items(req, details, actor_id)
            else:
                result = _decline_items(req, details, reason, actor_id, now, "award.decline")
        else:
            if quote.status != QuotationStatus.AWARDED.value:
                raise InvalidTransition(
                    decision, req.status, reason=f"quotation is '{quote.status}', not an open award offer",
                )
            if decision == "accept":
                result = _accept_single(req, quote, actor_id)
            else:
                result = _decline_single(req, quote, reason, actor_id, now, "award.decline")

    logger.info(
        "Award %s by vendor %s: %s",
        decision, quote.vendor_id, result.outcome,
        extra={
            "requisition_id": result.requisition_id,
            "quotation_id": quotation_id,
            "actor_id": actor_id,
            "outcome": result.outcome,
            "to_status": result.status,
        },
    )
    return result


def _expire_one(requisition_id: int, now) -> AwardResponseResult | None:
    with transaction():
        req = load_requisition_for_update(requisition_id)
        if req.status not in {s.value for s in _RESPONDING}:
            return None
        if _is_per_item(req):
            expired = [
                d for d in req.award_details
                if d.status == AwardDetailStatus.AWARDED.value
                and d.response_deadline is not None
                and as_utc(d.response_deadline) < now
            ]
            if not expired:
                return None
            return _decline_items(req, expired, EXPIRED_REASON, "system", now, "award.expire")

        quote = _awarded_quotation(req)
        if quote is None or quote.response_deadline is None or as_utc(quote.response_deadline) >= now:
            return None
        return _decline_single(req, quote, EXPIRED_REASON, "system", now, "award.expire")


def expire_award_deadlines(now=None) -> dict:
    """
    Treat every open offer past its response deadline as declined.

    One transaction per requisition; a failure on one does not stop the rest.

    Returns:
        {"checked": int, "results": [AwardResponseResult, ...], "errors": [...]}
    """
    now = as_utc(now) or utcnow()
    candidate_ids = [
        r.id for r in
        Requisition.query
        .filter(Requisition.status.in_([s.value for s in _RESPONDING]))
        .order_by(Requisition.id)
        .all()
    ]
    results = {"checked": len(candidate_ids), "results": [], "errors": []}
    for req_id in candidate_ids:
        try:
            outcome = _expire_one(req_id, now)
        except Exception as e:
            logger.error("Award expiry failed for requisition %s: %s", req_id, e, extra={"requisition_id": req_id})
            results["errors"].append({"requisition_id": req_id, "error": str(e), "error_type": type(e).__name__})
            continue
        if outcome is not None:
            results["results"].append(outcome)

    logger.info(
        "Award expiry: %d requisition(s) checked, %d expired, %d error(s)",
        results["checked"], len(results["results"]), len(results["errors"]),
    )
    return results


# ═════════════════════════════════════════════════════════════════════════════
# Exits from Award_Declined and Partially_Closed
# ═════════════════════════════════════════════════════════════════════════════

def _has_recommendation(req) -> bool:
    if _is_per_item(req):
        return any(d.status == AwardDetailStatus.AWARDED.value for d in req.award_details)
    return _awarded_quotation(req) is not None


def reopen_for_review(requisition_id: int, actor_id: int, comment: str | None = None) -> dict:
    """Send the standing recommendation back to the first reviewing role."""
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "reopen_for_review")
        _require_status(req, "reopen_for_review", RequisitionStatus.AWARD_DECLINED)
        if not _has_recommendation(req):
            raise InvalidTransition(
                "reopen_for_review", req.status,
                reason="no award recommendation remains; restart scoring instead",
            )

        chain = req.review_chain if req.review_chain is not None else directory.review_chain(req.total_award_value)
        step = approval_chain.enter_chain(chain, directory.resolve_role_holders)

        old_status = req.status
        req.review_chain = list(chain)
        req.status = step.status
        req.current_approver_id = step.approver_id
        req.approver_comment = comment
        db.session.flush()

        _audit(req, "award.reopen_for_review", actor_id, f"Recommendation reopened. {step.details}", old_status)
        result = {
            "requisition": req.to_dict(),
            "notifications": notifications.for_review_step(req, step, notifications.REVIEW_REQUESTED),
        }
    return result


def restart_scoring(
    requisition_id: int,
    actor_id: int,
    *,
    scoring_deadline=None,
    comment: str | None = None,
) -> dict:
    """Discard the award and reopen committee scoring.

    Ranks, award details and awarded ids are cleared and score sets
    unlocked.  Quotations that were declined stay declined.
    """
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "restart_scoring")
        _require_status(req, "restart_scoring", RequisitionStatus.AWARD_DECLINED)

        old_status = req.status
        for detail in list(req.award_details):
            req.award_details.remove(detail)
        for quote in req.quotations:
            if quote.status != QuotationStatus.DECLINED.value:
                quote.status = QuotationStatus.SUBMITTED.value
            quote.rank = None
            quote.response_deadline = None
            quote.final_average_score = None
            for score_set in quote.scores:
                score_set.is_locked = False
        req.awarded_quote_item_ids = []
        req.total_award_value = None
        req.review_chain = None
        req.current_approver_id = None
        req.approver_comment = comment
        if scoring_deadline is not None:
            req.scoring_deadline = scoring_deadline
        req.status = RequisitionStatus.SCORING_IN_PROGRESS.value
        db.session.flush()

        _audit(req, "award.restart_scoring", actor_id, "Award discarded; committee scoring reopened.", old_status)
        result = req.to_dict()

    logger.info("Scoring restarted", extra={"requisition_id": requisition_id, "actor_id": actor_id})
    return result


def restart_item_rfq(
    requisition_id: int,
    actor_id: int,
    item_ids: list[int],
    deadline,
    *,
    vendor_ids: list[int],
    comment: str | None = None,
) -> dict:
    """Re-solicit quotations for per-item awards that failed.

    Accepted items keep their award.  The declined and lapsed rows of the
    re-tendered items stay, so vendors that already refused an item remain
    excluded when the award is finalized again.  Invited vendors must not
    hold a quotation on the requisition yet.

    Returns:
        {"requisition": dict, "notifications": [Notification, ...]}
    """
    if not item_ids:
        raise ValidationError("Select at least one item to re-tender")
    if not vendor_ids:
        raise ValidationError("Select at least one vendor to invite")
    if deadline is None or as_utc(deadline) <= utcnow():
        raise ValidationError("Quotation deadline must be in the future", details={"deadline": str(deadline)})
    for vendor_id in vendor_ids:
        get_or_raise(Vendor, vendor_id)

    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "restart_item_rfq")
        _require_status(req, "restart_item_rfq", RequisitionStatus.PARTIALLY_CLOSED, RequisitionStatus.AWARD_DECLINED)
        if not _is_per_item(req):
            raise InvalidTransition(
                "restart_item_rfq", req.status, reason="single items can only be re-tendered under a per-item award",
            )
        if any(d.status == AwardDetailStatus.AWARDED.value for d in req.award_details):
            raise InvalidTransition(
                "restart_item_rfq", req.status, reason="open award offers must be answered first",
            )

        known = {i.id for i in req.items}
        unknown = sorted(set(item_ids) - known)
        if unknown:
            raise ValidationError(
                f"Item(s) {unknown} are not part of requisition {req.id}", details={"item_ids": unknown},
            )
        settled = {
            AwardDetailStatus.ACCEPTED.value,
            AwardDetailStatus.AWARDED.value,
            AwardDetailStatus.STANDBY.value,
        }
        not_failed = sorted({
            d.requisition_item_id for d in req.award_details
            if d.requisition_item_id in item_ids and d.status in settled
        })
        if not_failed:
            raise ValidationError(
                f"Item(s) {not_failed} still hold an award and cannot be re-tendered",
                details={"item_ids": not_failed},
            )
        already_quoted = sorted({q.vendor_id for q in req.quotations} & set(vendor_ids))
        if already_quoted:
            raise ValidationError(
                "Invited vendors already hold a quotation on this requisition",
                details={"vendor_ids": already_quoted},
            )

        old_status = req.status
        req.status = RequisitionStatus.ACCEPTING_QUOTES.value
        req.deadline = deadline
        req.review_chain = None
        req.current_approver_id = None
        req.approver_comment = comment
        db.session.flush()

        item_ids = sorted(set(item_ids))
        _audit(
            req, "requisition.restart_item_rfq", actor_id,
            f"RFQ reopened for item(s) {item_ids}; {len(vendor_ids)} vendor(s) invited, "
            f"quotations due {as_utc(deadline).isoformat()}.",
            old_status,
            item_ids=item_ids,
            vendor_ids=list(vendor_ids),
        )
        result = {
            "requisition": req.to_dict(),
            "notifications": [notifications.rfq_invitation(req, v, item_ids, deadline) for v in vendor_ids],
        }

    logger.info(
        "Item RFQ restarted",
        extra={"requisition_id": requisition_id, "actor_id": actor_id, "from_status": old_status},
    )
    return result
