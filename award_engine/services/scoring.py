"""
Score Aggregator & committee scoring intake.

Aggregation (pure):
    aggregate_criterion(criterion, raw_scores)      -> CriterionScore
    score_quote_item(quote_item_id, criteria, sets) -> ItemScoreBreakdown
    validate_criteria(criteria)                     -> raises IncompleteEvaluationData

    average  = mean(raw scores)            (0 when nobody rated the criterion)
    weighted = average * weight / 100
    final    = Σ weighted(financial) * financial_weight / 100
             + Σ weighted(technical) * technical_weight / 100

Every aggregate keeps the raw scores with scorer id and comment, so an
award decision can always be traced back to who scored what.

Intake (persisted, one audit row each):
    define_evaluation_criteria, assign_committee, submit_scores,
    scoring_progress
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from award_engine.core.exceptions import (
    IncompleteEvaluationData,
    InvalidTransition,
    Unauthorized,
    ValidationError,
)
from award_engine.models import db
from award_engine.models.audit import write_audit
from award_engine.models.quotation import CommitteeScoreSet, ItemScore, Quotation, Score
from award_engine.models.requisition import (
    CRITERION_CATEGORIES,
    CommitteeAssignment,
    Criterion,
    EvaluationCriteria,
)
from award_engine.services import directory
from award_engine.services.status import BIDDING_OPENED, RequisitionStatus
from award_engine.utils.helpers import (
    as_utc,
    get_or_raise,
    load_requisition_for_update,
    transaction,
    utcnow,
)

logger = logging.getLogger(__name__)

_WEIGHT_TOLERANCE = 1e-6

_COMMITTEE_EDITABLE = frozenset({
    RequisitionStatus.DRAFT.value,
    RequisitionStatus.PENDING_APPROVAL.value,
    RequisitionStatus.REJECTED.value,
    RequisitionStatus.PRE_APPROVED.value,
    RequisitionStatus.ACCEPTING_QUOTES.value,
    RequisitionStatus.SCORING_IN_PROGRESS.value,
})


# ═════════════════════════════════════════════════════════════════════════════
# Aggregation
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class RawScore:
    scorer_id: int
    score: float
    comment: str | None = None

    def to_dict(self) -> dict:
        return {"scorer_id": self.scorer_id, "score": self.score, "comment": self.comment}


@dataclass
class CriterionScore:
    criterion_id: int
    name: str
    category: str
    weight: float
    average_score: float
    weighted_score: float
    raw_scores: list[RawScore] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "criterion_id": self.criterion_id,
            "name": self.name,
            "category": self.category,
            "weight": self.weight,
            "average_score": self.average_score,
            "weighted_score": self.weighted_score,
            "raw_scores": [r.to_dict() for r in self.raw_scores],
        }


@dataclass
class ItemScoreBreakdown:
    quote_item_id: int
    financial: list[CriterionScore]
    technical: list[CriterionScore]
    total_financial: float
    total_technical: float
    final_score: float

    def to_dict(self) -> dict:
        return {
            "quote_item_id": self.quote_item_id,
            "financial": [c.to_dict() for c in self.financial],
            "technical": [c.to_dict() for c in self.technical],
            "total_financial": self.total_financial,
            "total_technical": self.total_technical,
            "final_score": self.final_score,
        }


def _sums_to_100(weights) -> bool:
    return math.isclose(sum(weights), 100.0, abs_tol=_WEIGHT_TOLERANCE)


def validate_criteria(criteria: EvaluationCriteria | None) -> EvaluationCriteria:
    """Check weights before any score is computed.

    A category whose overall weight is 0 may have no sub-criteria; any
    category that carries weight must have sub-criteria summing to 100.
    """
    if criteria is None:
        raise IncompleteEvaluationData("Requisition has no evaluation criteria")

    # Weights outside [0, 100] would let a final score escape [0, 100]
    out_of_range = {
        name: weight
        for name, weight in (
            [("financial_weight", criteria.financial_weight), ("technical_weight", criteria.technical_weight)]
            + [(c.name, c.weight) for c in criteria.criteria]
        )
        if weight is None or not 0 <= weight <= 100
    }
    if out_of_range:
        raise IncompleteEvaluationData(
            "Weights must lie between 0 and 100",
            details={"out_of_range": out_of_range},
        )

    if not _sums_to_100([criteria.financial_weight, criteria.technical_weight]):
        raise IncompleteEvaluationData(
            "Financial and technical weights must sum to 100",
            details={
                "financial_weight": criteria.financial_weight,
                "technical_weight": criteria.technical_weight,
            },
        )

    for category in CRITERION_CATEGORIES:
        subs = [c for c in criteria.criteria if c.category == category]
        if not subs and criteria.category_weight(category) == 0:
            continue
        if not _sums_to_100(c.weight for c in subs):
            raise IncompleteEvaluationData(
                f"{category.capitalize()} criteria weights must sum to 100",
                details={category: [c.to_dict() for c in subs]},
            )
    return criteria


def aggregate_criterion(criterion: Criterion, raw_scores: list[RawScore]) -> CriterionScore:
    average = sum(r.score for r in raw_scores) / len(raw_scores) if raw_scores else 0.0
    return CriterionScore(
        criterion_id=criterion.id,
        name=criterion.name,
        category=criterion.category,
        weight=criterion.weight,
        average_score=average,
        weighted_score=average * criterion.weight / 100,
        raw_scores=list(raw_scores),
    )


def _raw_scores_for(criterion_id: int, quote_item_id: int, score_sets) -> list[RawScore]:
    raw = []
    for score_set in score_sets:
        item_score = score_set.item_score_for(quote_item_id)
        if item_score is None:
            continue
        for s in item_score.scores:
            if s.criterion_id == criterion_id:
                raw.append(RawScore(scorer_id=score_set.scorer_id, score=s.score, comment=s.comment))
    return raw


def score_quote_item(
    quote_item_id: int,
    criteria: EvaluationCriteria,
    score_sets: list[CommitteeScoreSet],
) -> ItemScoreBreakdown:
    """Reduce every scorer's scores for one QuoteItem to its final weighted score.

    ``criteria`` must already have passed ``validate_criteria``.
    """
    financial = [
        aggregate_criterion(c, _raw_scores_for(c.id, quote_item_id, score_sets))
        for c in criteria.financial_criteria
    ]
    technical = [
        aggregate_criterion(c, _raw_scores_for(c.id, quote_item_id, score_sets))
        for c in criteria.technical_criteria
    ]
    total_financial = sum(c.weighted_score for c in financial)
    total_technical = sum(c.weighted_score for c in technical)
    final = (
        total_financial * (criteria.financial_weight / 100)
        + total_technical * (criteria.technical_weight / 100)
    )
    return ItemScoreBreakdown(
        quote_item_id=quote_item_id,
        financial=financial,
        technical=technical,
        total_financial=total_financial,
        total_technical=total_technical,
        final_score=final,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Criteria & committee set-up
# ═════════════════════════════════════════════════════════════════════════════

def _require_procurement(req, actor_id: int, action: str) -> None:
    if not directory.is_procurement(directory.user_roles(actor_id)):
        raise Unauthorized(actor_id, action, req.status, required_roles=directory.procurement_role_names())


def define_evaluation_criteria(
    requisition_id: int,
    actor_id: int,
    *,
    financial_weight: float,
    technical_weight: float,
    financial: list[dict],
    technical: list[dict],
) -> dict:
    """Create or replace a requisition's evaluation criteria.

    ``financial`` / ``technical``: ``[{"name": str, "weight": float}, ...]``.
    Refused once bidding has opened; criteria are frozen from then on.
    """
    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "define_criteria")
        if req.status in {s.value for s in BIDDING_OPENED}:
            raise InvalidTransition(
                "define_criteria", req.status,
                allowed_from=[RequisitionStatus.DRAFT.value, RequisitionStatus.PENDING_APPROVAL.value,
                              RequisitionStatus.REJECTED.value, RequisitionStatus.PRE_APPROVED.value],
                reason="evaluation criteria are frozen once bidding opens",
            )

        criteria = EvaluationCriteria(financial_weight=financial_weight, technical_weight=technical_weight)
        for category, entries in (("financial", financial), ("technical", technical)):
            for entry in entries:
                criteria.criteria.append(
                    Criterion(category=category, name=entry["name"], weight=float(entry["weight"]))
                )
        validate_criteria(criteria)

        if req.evaluation_criteria is not None:
            db.session.delete(req.evaluation_criteria)
            db.session.flush()
        req.evaluation_criteria = criteria
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.define_criteria",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=(
                f"Evaluation criteria set: financial {financial_weight:g}% "
                f"({len(financial)} criteria), technical {technical_weight:g}% ({len(technical)} criteria)."
            ),
        )
        result = criteria.to_dict()

    logger.info("Evaluation criteria defined", extra={"requisition_id": requisition_id, "actor_id": actor_id})
    return result


def assign_committee(
    requisition_id: int,
    actor_id: int,
    *,
    financial_member_ids: list[int],
    technical_member_ids: list[int],
    scoring_deadline=None,
) -> dict:
    """Replace the evaluation committees; the two must be disjoint."""
    overlap = set(financial_member_ids) & set(technical_member_ids)
    if overlap:
        raise ValidationError(
            "A user cannot sit on both the financial and the technical committee",
            details={"overlapping_user_ids": sorted(overlap)},
        )

    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "assign_committee")
        if req.status not in _COMMITTEE_EDITABLE:
            raise InvalidTransition(
                "assign_committee", req.status, allowed_from=sorted(_COMMITTEE_EDITABLE),
                reason="scoring has already completed",
            )

        req.committee_assignments = (
            [CommitteeAssignment(user_id=uid, committee="financial") for uid in financial_member_ids]
            + [CommitteeAssignment(user_id=uid, committee="technical") for uid in technical_member_ids]
        )
        if scoring_deadline is not None:
            req.scoring_deadline = scoring_deadline
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.assign_committee",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=(
                f"Committee assigned: {len(financial_member_ids)} financial, "
                f"{len(technical_member_ids)} technical member(s)."
            ),
            diff={"financial": financial_member_ids, "technical": technical_member_ids},
        )
        result = {
            "requisition_id": req.id,
            "financial_committee_member_ids": req.financial_committee_member_ids,
            "technical_committee_member_ids": req.technical_committee_member_ids,
        }
    return result


def extend_scoring_deadline(requisition_id: int, actor_id: int, *, scoring_deadline) -> dict:
    """Move the committee scoring deadline without touching membership."""
    if scoring_deadline is None or as_utc(scoring_deadline) <= utcnow():
        raise ValidationError(
            "Scoring deadline must be in the future", details={"scoring_deadline": str(scoring_deadline)},
        )

    with transaction():
        req = load_requisition_for_update(requisition_id)
        _require_procurement(req, actor_id, "extend_scoring_deadline")
        if req.status not in _COMMITTEE_EDITABLE:
            raise InvalidTransition(
                "extend_scoring_deadline", req.status, allowed_from=sorted(_COMMITTEE_EDITABLE),
                reason="scoring has already completed",
            )

        old_deadline = as_utc(req.scoring_deadline)
        req.scoring_deadline = scoring_deadline
        db.session.flush()

        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action="requisition.extend_scoring_deadline",
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=(
                f"Scoring deadline moved from {old_deadline.isoformat() if old_deadline else 'none'} "
                f"to {as_utc(scoring_deadline).isoformat()}."
            ),
            diff={"scoring_deadline": {
                "old": old_deadline.isoformat() if old_deadline else None,
                "new": as_utc(scoring_deadline).isoformat(),
            }},
        )
        result = req.to_dict()

    logger.info("Scoring deadline extended", extra={"requisition_id": requisition_id, "actor_id": actor_id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Score submission
# ═════════════════════════════════════════════════════════════════════════════

def submit_scores(
    quotation_id: int,
    scorer_id: int,
    item_scores: list[dict],
    committee_comment: str | None = None,
) -> dict:
    """Create or update in place one scorer's score set for a quotation.

    ``item_scores``: ``[{"quote_item_id": int,
                         "scores": [{"criterion_id", "score", "comment"?}]}]``

    Rules: requisition must be ``Scoring_In_Progress`` and before its
    scoring deadline; the scorer must sit on a committee and may score only
    that committee's criteria; locked sets cannot change.
    """
    quote = get_or_raise(Quotation, quotation_id)

    with transaction():
        req = load_requisition_for_update(quote.requisition_id)
        if req.status != RequisitionStatus.SCORING_IN_PROGRESS.value:
            raise InvalidTransition(
                "submit_scores", req.status, allowed_from=[RequisitionStatus.SCORING_IN_PROGRESS.value],
            )
        if req.scoring_deadline and as_utc(req.scoring_deadline) < utcnow():
            raise InvalidTransition("submit_scores", req.status, reason="scoring deadline has passed")

        committee = req.committee_of(scorer_id)
        if committee is None:
            raise Unauthorized(scorer_id, "submit_scores", req.status, required_roles=["Committee member"])

        criteria = validate_criteria(req.evaluation_criteria)
        allowed_criteria = {c.id for c in criteria.criteria if c.category == committee}
        quote_item_ids = {i.id for i in quote.items}

        new_item_scores = []
        for entry in item_scores:
            qi_id = entry.get("quote_item_id")
            if qi_id not in quote_item_ids:
                raise ValidationError(
                    f"Quote item {qi_id} does not belong to quotation {quote.id}",
                    details={"quote_item_id": qi_id},
                )
            item_score = ItemScore(quote_item_id=qi_id)
            for s in entry.get("scores", []):
                if s["criterion_id"] not in allowed_criteria:
                    raise ValidationError(
                        f"Criterion {s['criterion_id']} is not scored by the {committee} committee",
                        details={"criterion_id": s["criterion_id"], "committee": committee},
                    )
                value = float(s["score"])
                if not 0 <= value <= 100:
                    raise ValidationError(
                        "Scores must be between 0 and 100",
                        details={"criterion_id": s["criterion_id"], "score": value},
                    )
                item_score.scores.append(
                    Score(criterion_id=s["criterion_id"], score=value, comment=s.get("comment"))
                )
            new_item_scores.append(item_score)

        score_set = CommitteeScoreSet.query.filter_by(quotation_id=quote.id, scorer_id=scorer_id).first()
        created = score_set is None
        if created:
            score_set = CommitteeScoreSet(quotation_id=quote.id, scorer_id=scorer_id)
            db.session.add(score_set)
        elif score_set.is_locked:
            raise ValidationError(
                "Score set is locked: a final award decision has consumed it",
                details={"score_set_id": score_set.id},
            )
        else:
            score_set.item_scores = []
            db.session.flush()

        score_set.committee_comment = committee_comment
        score_set.item_scores = new_item_scores
        score_set.submitted_at = utcnow()
        db.session.flush()

        write_audit(
            entity_type="quotation",
            entity_id=quote.id,
            action="quotation.score",
            actor=scorer_id,
            transaction_id=req.transaction_id,
            details=(
                f"{'Submitted' if created else 'Updated'} {committee} scores for quote from "
                f"{quote.vendor_name or quote.vendor_id} ({len(new_item_scores)} item(s))."
            ),
        )
        result = score_set.to_dict()

    logger.info(
        "Scores submitted",
        extra={"requisition_id": quote.requisition_id, "quotation_id": quotation_id, "actor_id": scorer_id},
    )
    return result


def scoring_progress(requisition) -> dict:
    """Which committee members have scored which quotations.

    Returns:
        {"complete": bool, "members": [{"user_id", "committee",
         "scored_quotation_ids", "missing_quotation_ids"}]}
    """
    quotations = [q for q in requisition.quotations]
    members = []
    complete = bool(requisition.committee_assignments) and bool(quotations)
    for assignment in sorted(requisition.committee_assignments, key=lambda a: a.user_id):
        scored = [
            q.id for q in quotations
            if any(s.scorer_id == assignment.user_id for s in q.scores)
        ]
        missing = [q.id for q in quotations if q.id not in scored]
        if missing:
            complete = False
        members.append({
            "user_id": assignment.user_id,
            "committee": assignment.committee,
            "scored_quotation_ids": scored,
            "missing_quotation_ids": missing,
        })
    return {"complete": complete, "members": members}
