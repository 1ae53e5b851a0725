"""
Award Lifecycle Controller tests:
  - finalize_award under both strategies, review-chain entry, approval matrix
  - notify_vendors
  - vendor accept / decline with standby promotion (single-vendor & per-item)
  - exhaustion of standbys
  - response-deadline expiry
  - exits from Award_Declined (reopen_for_review, restart_scoring)
  - re-tendering failed per-item awards (restart_item_rfq)
"""

from datetime import timedelta

import pytest

from award_engine.core.exceptions import (
    IncompleteEvaluationData,
    InvalidTransition,
    Unauthorized,
    ValidationError,
)
from award_engine.models import db
from award_engine.models.audit import AuditLog
from award_engine.models.quotation import CommitteeScoreSet, PerItemAwardDetail, Quotation
from award_engine.models.requisition import Requisition
from award_engine.services import notifications
from award_engine.services.approval_service import transition_requisition
from award_engine.services.award_lifecycle import (
    award_views,
    expire_award_deadlines,
    finalize_award,
    notify_vendors,
    reopen_for_review,
    respond_to_award,
    restart_item_rfq,
    restart_scoring,
)
from award_engine.services.bidding import close_bidding, complete_scoring, submit_quotation
from award_engine.services.directory import seed_approval_matrix
from award_engine.utils.helpers import as_utc, utcnow

from factories import (
    award_ready_requisition,
    make_requisition,
    make_user,
    make_vendor,
    score_uniformly,
    scored_bid,
    vendor_user,
)


# ── helpers ──────────────────────────────────────────────────────────────


def _rep(quote):
    return vendor_user(quote.vendor).id


def _req(req):
    return db.session.get(Requisition, req.id)


def _statuses(quotes):
    return [(q.status, q.rank) for q in quotes]


def _details(req, item):
    return [
        (d.vendor_id, d.status, d.rank)
        for d in PerItemAwardDetail.query
        .filter_by(requisition_id=req.id, requisition_item_id=item.id)
        .order_by(PerItemAwardDetail.id)
    ]


def _single_vendor_bids(committee, scores=(90, 80, 70, 60)):
    req = award_ready_requisition(committee)
    quotes = [
        scored_bid(req, make_vendor(f"Vendor {i}"), committee, [(req.items[0], s), (req.items[1], s)])
        for i, s in enumerate(scores)
    ]
    return req, quotes


def _single_vendor_offer(committee, officer, scores=(90, 80, 70, 60)):
    req, quotes = _single_vendor_bids(committee, scores)
    finalize_award(req.id, officer.id)
    notify_vendors(req.id, officer.id)
    return req, quotes


def _per_item_offer(committee, officer, a_scores=(90, 90), b_scores=(80, 80)):
    """Vendor A and vendor B bid on both items; A wins both by default."""
    req = award_ready_requisition(committee, strategy="per_item")
    laptop, monitor = req.items
    a = scored_bid(req, make_vendor("Alpha"), committee, [(laptop, a_scores[0]), (monitor, a_scores[1])])
    b = scored_bid(req, make_vendor("Beta"), committee, [(laptop, b_scores[0]), (monitor, b_scores[1])])
    finalize_award(req.id, officer.id)
    notify_vendors(req.id, officer.id)
    return req, a, b


# ═══════════════════════════════════════════════════════════════════════════
# Finalization
# ═══════════════════════════════════════════════════════════════════════════


class TestFinalizeSingleVendor:

    def test_ranks_winner_standbys_and_rejected(self, committee, officer):
        req, quotes = _single_vendor_bids(committee)

        result = finalize_award(req.id, officer.id)

        assert result["strategy"] == "single_vendor"
        assert result["requisition"]["status"] == "PostApproved"
        assert _statuses(quotes) == [("Awarded", 1), ("Standby", 2), ("Standby", 3), ("Rejected", None)]
        assert _req(req).awarded_quote_item_ids == [qi.id for qi in quotes[0].items]
        assert _req(req).total_award_value == pytest.approx(500.0)

    def test_locks_score_sets_and_audits(self, committee, officer):
        req, _ = _single_vendor_bids(committee, scores=(90, 80))

        finalize_award(req.id, officer.id)

        assert all(s.is_locked for s in CommitteeScoreSet.query.all())
        log = AuditLog.query.filter_by(action="award.finalize").one()
        assert log.diff["status"] == {"old": "Scoring_Complete", "new": "PostApproved"}

    def test_enters_first_review_step(self, committee, officer, review_chain):
        review_chain(["Committee", "Director"])
        cam = make_user("Cam", "Committee")
        make_user("Dee", "Director")
        req, _ = _single_vendor_bids(committee, scores=(90,))

        result = finalize_award(req.id, officer.id)

        assert result["requisition"]["status"] == "Pending_Committee"
        assert result["requisition"]["current_approver_id"] == cam.id
        assert result["requisition"]["review_chain"] == ["Committee", "Director"]
        assert result["notifications"][0].recipient_ids == [cam.id]

    def test_review_chain_from_approval_matrix(self, committee, officer):
        seed_approval_matrix([
            {"name": "Small", "min_amount": 0, "max_amount": 1000, "steps": ["Manager"]},
            {"name": "Large", "min_amount": 1000.01, "max_amount": None, "steps": ["Manager", "CFO"]},
        ])
        db.session.commit()
        make_user("Mo", "Manager")
        req, _ = _single_vendor_bids(committee, scores=(90,))

        result = finalize_award(req.id, officer.id)

        assert result["requisition"]["status"] == "Pending_Manager"
        assert result["requisition"]["review_chain"] == ["Manager"]

    def test_no_tier_covers_value(self, committee, officer):
        seed_approval_matrix([{"name": "Tiny", "min_amount": 0, "max_amount": 10, "steps": ["Manager"]}])
        db.session.commit()
        req, quotes = _single_vendor_bids(committee, scores=(90,))

        with pytest.raises(ValidationError, match="approval tier"):
            finalize_award(req.id, officer.id)

        assert _req(req).status == "Scoring_Complete"
        assert quotes[0].status == "Submitted"

    def test_misconfigured_review_chain_is_structured_error(self, committee, officer, review_chain):
        review_chain(["Approval"])
        req, quotes = _single_vendor_bids(committee, scores=(90,))

        with pytest.raises(ValidationError, match="collides") as exc:
            finalize_award(req.id, officer.id)

        assert exc.value.details["role"] == "Approval"
        assert _req(req).status == "Scoring_Complete"
        assert quotes[0].status == "Submitted"

    def test_requires_scoring_complete(self, committee, officer):
        req, _ = _single_vendor_bids(committee, scores=(90,))
        req.status = "Scoring_In_Progress"
        db.session.commit()
        with pytest.raises(InvalidTransition):
            finalize_award(req.id, officer.id)

    def test_missing_criteria(self, officer):
        req = make_requisition(status="Scoring_Complete")
        with pytest.raises(IncompleteEvaluationData):
            finalize_award(req.id, officer.id)

    def test_nothing_to_award(self, committee, officer):
        req = award_ready_requisition(committee)
        with pytest.raises(ValidationError, match="No eligible bids"):
            finalize_award(req.id, officer.id)

    def test_requires_procurement(self, committee):
        req, _ = _single_vendor_bids(committee, scores=(90,))
        with pytest.raises(Unauthorized):
            finalize_award(req.id, make_user("Random").id)

    def test_award_views_read_only(self, committee):
        req, quotes = _single_vendor_bids(committee, scores=(90, 80))
        views = award_views(req.id)
        assert views["available"] is True
        assert views["single_vendor"]["winner"]["vendor_id"] == quotes[0].vendor_id
        assert _req(req).status == "Scoring_Complete"


class TestFinalizePerItem:

    def test_split_award(self, committee, officer):
        req = award_ready_requisition(committee, strategy="per_item")
        laptop, monitor = req.items
        a = scored_bid(req, make_vendor("Alpha"), committee, [(laptop, 90), (monitor, 60)], unit_price=10.0)
        b = scored_bid(req, make_vendor("Beta"), committee, [(laptop, 70), (monitor, 95)], unit_price=20.0)

        finalize_award(req.id, officer.id)

        assert _details(req, laptop) == [(a.vendor_id, "Awarded", 1), (b.vendor_id, "Standby", 2)]
        assert _details(req, monitor) == [(b.vendor_id, "Awarded", 1), (a.vendor_id, "Standby", 2)]
        assert _statuses([a, b]) == [("Partially_Awarded", 1), ("Partially_Awarded", 1)]
        promoted = PerItemAwardDetail.query.filter_by(vendor_id=b.vendor_id, status="Awarded").one()
        assert as_utc(_req(req).award_response_deadline) == as_utc(promoted.response_deadline)
        assert _req(req).total_award_value == pytest.approx(10.0 * 2 + 20.0 * 3)

    def test_strategy_override(self, committee, officer):
        req, quotes = _single_vendor_bids(committee, scores=(90, 80))

        result = finalize_award(req.id, officer.id, strategy="per_item")

        assert result["strategy"] == "per_item"
        assert _req(req).award_strategy == "per_item"
        assert quotes[0].status == "Awarded"

    def test_item_nobody_bid_on_stays_unawarded(self, committee, officer):
        req = award_ready_requisition(committee, strategy="per_item")
        laptop, monitor = req.items
        scored_bid(req, make_vendor("Alpha"), committee, [(laptop, 90)])

        result = finalize_award(req.id, officer.id)

        assert result["award_views"]["per_item"]["unawardable_item_ids"] == [monitor.id]
        assert _details(req, monitor) == []


# ═══════════════════════════════════════════════════════════════════════════
# Notification
# ═══════════════════════════════════════════════════════════════════════════


class TestNotifyVendors:

    def test_single_vendor_offer(self, committee, officer):
        req, quotes = _single_vendor_bids(committee, scores=(90, 80))
        finalize_award(req.id, officer.id)

        result = notify_vendors(req.id, officer.id)

        assert result["requisition"]["status"] == "Awarded"
        (note,) = result["notifications"]
        assert note.template == notifications.AWARD_OFFER
        assert note.recipient_ids == [_rep(quotes[0])]
        assert quotes[0].response_deadline is not None

    def test_configured_deadline_used(self, committee, officer):
        req, quotes = _single_vendor_bids(committee, scores=(90,))
        due = utcnow() + timedelta(days=5)
        finalize_award(req.id, officer.id, award_response_deadline=due)

        notify_vendors(req.id, officer.id)

        assert as_utc(quotes[0].response_deadline) == due

    def test_per_item_one_offer_per_vendor(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer, a_scores=(90, 60), b_scores=(70, 95))

        notes = AuditLog.query.filter_by(action="award.notify_vendors").one()
        details = PerItemAwardDetail.query.filter_by(status="Awarded").all()

        assert "2 vendor(s)" in notes.details
        assert all(d.response_deadline is not None for d in details)

    def test_only_after_approval(self, committee, officer, review_chain):
        review_chain(["Committee"])
        make_user("Cam", "Committee")
        req, _ = _single_vendor_bids(committee, scores=(90,))
        finalize_award(req.id, officer.id)
        with pytest.raises(InvalidTransition):
            notify_vendors(req.id, officer.id)


# ═══════════════════════════════════════════════════════════════════════════
# Single-vendor responses
# ═══════════════════════════════════════════════════════════════════════════


class TestSingleVendorResponses:

    def test_accept_is_ready_for_po(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)

        result = respond_to_award(quotes[0].id, _rep(quotes[0]), "accept")

        assert result.outcome == "accepted"
        assert result.status == "Ready_For_PO"
        assert quotes[0].status == "Accepted"
        assert result.notifications[0].template == notifications.AWARD_ACCEPTED

    def test_decline_promotes_next_vendor(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)

        result = respond_to_award(quotes[0].id, _rep(quotes[0]), "decline", reason="no capacity")

        assert result.outcome == "promoted"
        assert result.status == "Awarded"
        assert result.promoted == [{"vendor_id": quotes[1].vendor_id, "quotation_id": quotes[1].id}]
        assert _statuses(quotes) == [("Declined", None), ("Awarded", 1), ("Standby", 2), ("Standby", 3)]
        assert quotes[0].decline_reason == "no capacity"
        assert quotes[1].response_deadline is not None
        assert _req(req).awarded_quote_item_ids == [qi.id for qi in quotes[1].items]
        assert result.notifications[0].recipient_ids == [_rep(quotes[1])]

    def test_promotion_moves_the_requisition_deadline(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)
        first_deadline = as_utc(_req(req).award_response_deadline)

        result = expire_award_deadlines(now=first_deadline + timedelta(hours=1))

        assert result["results"][0].outcome == "promoted"
        moved = as_utc(_req(req).award_response_deadline)
        assert moved > first_deadline
        assert moved == as_utc(quotes[1].response_deadline)

    def test_every_eligible_vendor_is_tried_before_exhaustion(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)

        for declining, promoted in zip(quotes, quotes[1:]):
            result = respond_to_award(declining.id, _rep(declining), "decline")
            assert result.promoted[0]["quotation_id"] == promoted.id

        result = respond_to_award(quotes[3].id, _rep(quotes[3]), "decline")

        assert result.exhausted_standbys is True
        assert result.status == "Award_Declined"
        assert result.notifications[0].template == notifications.AWARD_EXHAUSTED
        assert AuditLog.query.filter_by(action="award.decline").count() == 4

    def test_other_vendor_cannot_respond(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)
        with pytest.raises(Unauthorized):
            respond_to_award(quotes[0].id, _rep(quotes[1]), "accept")
        assert quotes[0].status == "Awarded"

    def test_standby_cannot_accept(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)
        with pytest.raises(InvalidTransition, match="Standby"):
            respond_to_award(quotes[1].id, _rep(quotes[1]), "accept")

    def test_unknown_decision(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)
        with pytest.raises(ValidationError):
            respond_to_award(quotes[0].id, _rep(quotes[0]), "maybe")


# ═══════════════════════════════════════════════════════════════════════════
# Per-item responses
# ═══════════════════════════════════════════════════════════════════════════


class TestPerItemResponses:

    def test_accept_everything_is_ready_for_po(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)

        result = respond_to_award(a.id, _rep(a), "accept")

        assert result.status == "Ready_For_PO"
        assert a.status == "Accepted"

    def test_accept_one_item_is_partially_closed(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)

        result = respond_to_award(a.id, _rep(a), "accept", quote_item_id=a.items[0].id)

        assert result.status == "Partially_Closed"
        laptop, monitor = req.items
        assert _details(req, laptop)[0] == (a.vendor_id, "Accepted", 1)
        assert _details(req, monitor)[0] == (a.vendor_id, "Awarded", 1)

    def test_decline_one_item_promotes_on_that_item(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)
        laptop, monitor = req.items

        result = respond_to_award(a.id, _rep(a), "decline", quote_item_id=a.items[0].id, reason="stock")

        assert result.outcome == "promoted"
        assert result.status == "Awarded"
        assert result.promoted == [
            {"requisition_item_id": laptop.id, "vendor_id": b.vendor_id, "quotation_id": b.id},
        ]
        assert _details(req, laptop) == [(a.vendor_id, "Declined", 1), (b.vendor_id, "Awarded", 1)]
        assert _details(req, monitor) == [(a.vendor_id, "Awarded", 1), (b.vendor_id, "Standby", 2)]
        assert _statuses([a, b]) == [("Partially_Awarded", 1), ("Partially_Awarded", 1)]

    def test_item_without_candidates_fails(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)
        laptop, monitor = req.items
        respond_to_award(a.id, _rep(a), "decline", quote_item_id=a.items[0].id)

        result = respond_to_award(b.id, _rep(b), "decline")

        assert result.exhausted_standbys is True
        assert result.failed_item_ids == [laptop.id]
        assert result.status == "Awarded"
        assert [s for _, s, _ in _details(req, laptop)] == ["Declined", "Failed_to_Award"]
        assert b.status == "Standby"

        closed = respond_to_award(a.id, _rep(a), "accept")

        assert closed.status == "Partially_Closed"

    def test_every_item_failed_is_award_declined(self, committee, officer):
        req = award_ready_requisition(committee, strategy="per_item", items=(("Server", 1),))
        only = scored_bid(req, make_vendor("Alpha"), committee, [(req.items[0], 90)])
        finalize_award(req.id, officer.id)
        notify_vendors(req.id, officer.id)

        result = respond_to_award(only.id, _rep(only), "decline")

        assert result.status == "Award_Declined"
        assert only.status == "Declined"

    def test_reject_partial_closure_and_refinalize(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)
        laptop, monitor = req.items
        respond_to_award(a.id, _rep(a), "accept", quote_item_id=a.items[0].id)

        transition_requisition(req.id, "reject", officer.id)
        assert _req(req).status == "Scoring_Complete"
        assert _details(req, monitor) == []

        finalize_award(req.id, officer.id)

        assert _details(req, laptop) == [(a.vendor_id, "Accepted", 1)]
        assert _details(req, monitor) == [(a.vendor_id, "Awarded", 1), (b.vendor_id, "Standby", 2)]

    def test_no_open_offer(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)
        with pytest.raises(InvalidTransition, match="no open award offer"):
            respond_to_award(b.id, _rep(b), "accept")


# ═══════════════════════════════════════════════════════════════════════════
# Response deadline expiry
# ═══════════════════════════════════════════════════════════════════════════


class TestExpiry:

    def test_overdue_single_vendor_offer_declined_by_system(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)

        result = expire_award_deadlines(now=utcnow() + timedelta(days=30))

        assert result["checked"] == 1
        (outcome,) = result["results"]
        assert outcome.outcome == "promoted"
        assert quotes[0].status == "Declined"
        assert quotes[0].decline_reason == "response deadline expired"
        log = AuditLog.query.filter_by(action="award.expire").one()
        assert log.actor == "system"

    def test_nothing_due(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer)

        result = expire_award_deadlines()

        assert result["results"] == []
        assert quotes[0].status == "Awarded"

    def test_overdue_per_item_offers(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)

        result = expire_award_deadlines(now=utcnow() + timedelta(days=30))

        (outcome,) = result["results"]
        assert len(outcome.promoted) == 2
        assert b.status == "Awarded"
        assert a.status == "Declined"


# ═══════════════════════════════════════════════════════════════════════════
# Exits from Award_Declined
# ═══════════════════════════════════════════════════════════════════════════


class TestAwardDeclinedExits:

    def _declined_by_review(self, committee, officer, review_chain):
        review_chain(["Committee"])
        cam = make_user("Cam", "Committee")
        req, quotes = _single_vendor_bids(committee, scores=(90, 80))
        finalize_award(req.id, officer.id)
        transition_requisition(req.id, "reject", cam.id)
        return req, quotes, cam

    def test_reopen_for_review(self, committee, officer, review_chain):
        req, quotes, cam = self._declined_by_review(committee, officer, review_chain)
        assert _req(req).status == "Award_Declined"

        result = reopen_for_review(req.id, officer.id, comment="Scores re-checked")

        assert result["requisition"]["status"] == "Pending_Committee"
        assert result["requisition"]["current_approver_id"] == cam.id
        assert quotes[0].status == "Awarded"

    def test_reopen_needs_a_recommendation(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer, scores=(90,))
        respond_to_award(quotes[0].id, _rep(quotes[0]), "decline")

        with pytest.raises(InvalidTransition, match="restart scoring"):
            reopen_for_review(req.id, officer.id)

    def test_restart_scoring(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer, scores=(90,))
        respond_to_award(quotes[0].id, _rep(quotes[0]), "decline")

        result = restart_scoring(req.id, officer.id, scoring_deadline=utcnow() + timedelta(days=3))

        assert result["status"] == "Scoring_In_Progress"
        assert result["awarded_quote_item_ids"] == []
        assert result["review_chain"] == []
        assert quotes[0].status == "Declined"
        assert not any(s.is_locked for s in CommitteeScoreSet.query.all())
        assert AuditLog.query.filter_by(action="award.restart_scoring").count() == 1

    def test_restart_resets_undeclined_quotes(self, committee, officer, review_chain):
        req, quotes, _ = self._declined_by_review(committee, officer, review_chain)

        restart_scoring(req.id, officer.id)

        assert _statuses(quotes) == [("Submitted", None), ("Submitted", None)]
        assert PerItemAwardDetail.query.count() == 0

    def test_restart_only_from_award_declined(self, committee, officer):
        req, _ = _single_vendor_offer(committee, officer, scores=(90,))
        with pytest.raises(InvalidTransition):
            restart_scoring(req.id, officer.id)


# ═══════════════════════════════════════════════════════════════════════════
# Re-tendering failed items
# ═══════════════════════════════════════════════════════════════════════════


class TestRestartItemRfq:

    def _monitor_failed(self, committee, officer):
        """Alpha is the only bidder; it accepts the laptop and declines the monitor."""
        req = award_ready_requisition(committee, strategy="per_item")
        laptop, monitor = req.items
        alpha = scored_bid(req, make_vendor("Alpha"), committee, [(laptop, 90), (monitor, 90)])
        finalize_award(req.id, officer.id)
        notify_vendors(req.id, officer.id)
        respond_to_award(alpha.id, _rep(alpha), "accept", quote_item_id=alpha.items[0].id)
        result = respond_to_award(alpha.id, _rep(alpha), "decline", quote_item_id=alpha.items[1].id)
        assert result.exhausted_standbys is True
        assert result.status == "Partially_Closed"
        return req, alpha

    def test_reopens_bidding_for_failed_items(self, committee, officer):
        req, alpha = self._monitor_failed(committee, officer)
        laptop, monitor = req.items
        gamma = make_vendor("Gamma")

        result = restart_item_rfq(
            req.id, officer.id, [monitor.id], utcnow() + timedelta(days=5), vendor_ids=[gamma.id],
        )

        assert result["requisition"]["status"] == "Accepting_Quotes"
        assert result["requisition"]["review_chain"] == []
        (note,) = result["notifications"]
        assert note.template == notifications.RFQ_REISSUED
        assert note.recipient_ids == [vendor_user(gamma).id]
        assert note.data["requisition_item_ids"] == [monitor.id]
        assert _details(req, laptop) == [(alpha.vendor_id, "Accepted", 1)]
        log = AuditLog.query.filter_by(action="requisition.restart_item_rfq").one()
        assert log.diff["status"] == {"old": "Partially_Closed", "new": "Accepting_Quotes"}
        assert log.diff["item_ids"] == [monitor.id]

    def test_new_bidder_wins_the_retendered_item(self, committee, officer):
        req, alpha = self._monitor_failed(committee, officer)
        laptop, monitor = req.items
        gamma = make_vendor("Gamma")
        restart_item_rfq(req.id, officer.id, [monitor.id], utcnow() + timedelta(days=5), vendor_ids=[gamma.id])

        submitted = submit_quotation(req.id, gamma.id, [{"requisition_item_id": monitor.id, "unit_price": 95.0}])
        close_bidding(req.id, officer.id)
        new_quote = db.session.get(Quotation, submitted["id"])
        score_uniformly(new_quote, committee, {new_quote.items[0]: 70})
        complete_scoring(req.id, officer.id)
        finalize_award(req.id, officer.id)

        assert _req(req).status == "PostApproved"
        assert _details(req, laptop) == [(alpha.vendor_id, "Accepted", 1)]
        assert _details(req, monitor)[-1] == (gamma.id, "Awarded", 1)
        assert (alpha.vendor_id, "Awarded", 1) not in _details(req, monitor)

    def test_open_offers_block_retender(self, committee, officer):
        req, a, b = _per_item_offer(committee, officer)
        respond_to_award(a.id, _rep(a), "accept", quote_item_id=a.items[0].id)
        gamma = make_vendor("Gamma")

        with pytest.raises(InvalidTransition, match="open award offers"):
            restart_item_rfq(req.id, officer.id, [req.items[1].id], utcnow() + timedelta(days=5),
                             vendor_ids=[gamma.id])

        assert _req(req).status == "Partially_Closed"

    def test_accepted_item_cannot_be_retendered(self, committee, officer):
        req, alpha = self._monitor_failed(committee, officer)
        laptop, _ = req.items

        with pytest.raises(ValidationError, match="still hold an award") as exc:
            restart_item_rfq(req.id, officer.id, [laptop.id], utcnow() + timedelta(days=5),
                             vendor_ids=[make_vendor("Gamma").id])

        assert exc.value.details["item_ids"] == [laptop.id]
        assert AuditLog.query.filter_by(action="requisition.restart_item_rfq").count() == 0

    def test_invited_vendor_must_be_new(self, committee, officer):
        req, alpha = self._monitor_failed(committee, officer)
        with pytest.raises(ValidationError, match="already hold a quotation"):
            restart_item_rfq(req.id, officer.id, [req.items[1].id], utcnow() + timedelta(days=5),
                             vendor_ids=[alpha.vendor_id])

    def test_single_vendor_award_cannot_retender_items(self, committee, officer):
        req, quotes = _single_vendor_offer(committee, officer, scores=(90,))
        respond_to_award(quotes[0].id, _rep(quotes[0]), "decline")

        with pytest.raises(InvalidTransition, match="per-item"):
            restart_item_rfq(req.id, officer.id, [req.items[0].id], utcnow() + timedelta(days=5),
                             vendor_ids=[make_vendor("Gamma").id])

    def test_deadline_must_be_in_the_future(self, committee, officer):
        req, _ = self._monitor_failed(committee, officer)
        with pytest.raises(ValidationError, match="future"):
            restart_item_rfq(req.id, officer.id, [req.items[1].id], utcnow() - timedelta(hours=1),
                             vendor_ids=[make_vendor("Gamma").id])
