"""
Bid Ranking Engine.

Turns aggregated item scores into the two award views procurement chooses
between.  Both views are always computed from the same champion-bid table
so what is shown and what gets persisted cannot drift apart.

    compute_award_views(requisition) -> AwardViews
        .single_vendor : SingleVendorView  (vendors by mean champion score)
        .per_item      : PerItemView       (champion bids ranked per item)

Rules:
    - Quotations with status Declined are dropped before anything is ranked.
    - Champion bid = a vendor's best alternate for one requisition item;
      exact ties keep the alternate submitted first.
    - Single-vendor score = mean of the vendor's champion scores over the
      items it bid on (unbid items are not zero-filled).
    - Sorting is stable: exact ties keep submission order.
    - Rank 1 wins, ranks 2..(1 + standby_limit) stand by, the rest did not win.
    - An item nobody bid on has no winner and no standbys (no_eligible_bids).
    - No evaluation criteria → AwardViews.available is False.  Malformed
      criteria raise IncompleteEvaluationData before any score is computed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from award_engine.services.scoring import ItemScoreBreakdown, score_quote_item, validate_criteria
from award_engine.services.status import QuotationStatus
from award_engine.utils.helpers import as_utc

logger = logging.getLogger(__name__)

DEFAULT_STANDBY_LIMIT = 2

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ChampionBid:
    requisition_item_id: int
    vendor_id: int
    quotation_id: int
    quote_item_id: int
    score: float
    unit_price: float
    quantity: int
    breakdown: ItemScoreBreakdown | None = None
    # Position of the quotation in submission order
    sequence: int = 0

    @property
    def total_price(self) -> float:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "requisition_item_id": self.requisition_item_id,
            "vendor_id": self.vendor_id,
            "quotation_id": self.quotation_id,
            "quote_item_id": self.quote_item_id,
            "score": self.score,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
        }


@dataclass
class ItemRanking:
    """Champion bids for one requisition item, best first."""

    requisition_item_id: int
    ranked_bids: list[ChampionBid] = field(default_factory=list)
    standby_limit: int = DEFAULT_STANDBY_LIMIT

    @property
    def no_eligible_bids(self) -> bool:
        return not self.ranked_bids

    @property
    def winner(self) -> ChampionBid | None:
        return self.ranked_bids[0] if self.ranked_bids else None

    @property
    def standbys(self) -> list[ChampionBid]:
        return self.ranked_bids[1:1 + self.standby_limit]

    def rank_of(self, vendor_id: int) -> int | None:
        for index, bid in enumerate(self.ranked_bids, start=1):
            if bid.vendor_id == vendor_id:
                return index
        return None

    def to_dict(self) -> dict:
        return {
            "requisition_item_id": self.requisition_item_id,
            "no_eligible_bids": self.no_eligible_bids,
            "winner": self.winner.to_dict() if self.winner else None,
            "standbys": [b.to_dict() for b in self.standbys],
            "ranked_bids": [
                {**b.to_dict(), "rank": i} for i, b in enumerate(self.ranked_bids, start=1)
            ],
        }


@dataclass
class VendorScore:
    vendor_id: int
    quotation_id: int
    final_vendor_score: float
    champion_bids: list[ChampionBid] = field(default_factory=list)

    @property
    def total_price(self) -> float:
        return sum(b.total_price for b in self.champion_bids)

    def to_dict(self) -> dict:
        return {
            "vendor_id": self.vendor_id,
            "quotation_id": self.quotation_id,
            "final_vendor_score": self.final_vendor_score,
            "items_bid": len(self.champion_bids),
            "champion_bids": [b.to_dict() for b in self.champion_bids],
        }


@dataclass
class SingleVendorView:
    ranked_vendors: list[VendorScore] = field(default_factory=list)
    standby_limit: int = DEFAULT_STANDBY_LIMIT

    @property
    def no_eligible_bids(self) -> bool:
        return not self.ranked_vendors

    @property
    def winner(self) -> VendorScore | None:
        return self.ranked_vendors[0] if self.ranked_vendors else None

    @property
    def standbys(self) -> list[VendorScore]:
        return self.ranked_vendors[1:1 + self.standby_limit]

    @property
    def award_value(self) -> float:
        return self.winner.total_price if self.winner else 0.0

    def to_dict(self) -> dict:
        return {
            "no_eligible_bids": self.no_eligible_bids,
            "winner": self.winner.to_dict() if self.winner else None,
            "standbys": [v.to_dict() for v in self.standbys],
            "ranked_vendors": [
                {**v.to_dict(), "rank": i} for i, v in enumerate(self.ranked_vendors, start=1)
            ],
            "award_value": self.award_value,
        }


@dataclass
class PerItemView:
    items: list[ItemRanking] = field(default_factory=list)

    def for_item(self, requisition_item_id: int) -> ItemRanking | None:
        for ranking in self.items:
            if ranking.requisition_item_id == requisition_item_id:
                return ranking
        return None

    @property
    def unawardable_item_ids(self) -> list[int]:
        return [r.requisition_item_id for r in self.items if r.no_eligible_bids]

    @property
    def award_value(self) -> float:
        return sum(r.winner.total_price for r in self.items if r.winner)

    def to_dict(self) -> dict:
        return {
            "items": [r.to_dict() for r in self.items],
            "unawardable_item_ids": self.unawardable_item_ids,
            "award_value": self.award_value,
        }


@dataclass
class AwardViews:
    available: bool
    reason: str | None = None
    single_vendor: SingleVendorView | None = None
    per_item: PerItemView | None = None
    breakdowns: dict[int, ItemScoreBreakdown] = field(default_factory=dict)

    @classmethod
    def unavailable(cls, reason: str) -> "AwardViews":
        return cls(available=False, reason=reason)

    def to_dict(self) -> dict:
        if not self.available:
            return {"available": False, "reason": self.reason}
        return {
            "available": True,
            "single_vendor": self.single_vendor.to_dict(),
            "per_item": self.per_item.to_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

def submission_order(quotations) -> list:
    """Quotations in the order they were submitted (id breaks timestamp ties)."""
    return sorted(quotations, key=lambda q: (as_utc(q.submitted_at) or _EPOCH, q.id or 0))


def eligible_quotations(quotations) -> list:
    return [q for q in submission_order(quotations) if q.status != QuotationStatus.DECLINED.value]


def score_breakdowns(criteria, quotations) -> dict[int, ItemScoreBreakdown]:
    breakdowns = {}
    for quote in quotations:
        for quote_item in quote.items:
            breakdowns[quote_item.id] = score_quote_item(quote_item.id, criteria, quote.scores)
    return breakdowns


def champion_bids(
    requisition_items,
    quotations,
    breakdowns: dict[int, ItemScoreBreakdown],
    exclude: set[tuple[int, int]] | None = None,
) -> dict[int, list[ChampionBid]]:
    """Per requisition item, each vendor's best alternate, in submission order.

    ``exclude`` holds ``(requisition_item_id, vendor_id)`` pairs that may not
    compete for that item (e.g. the vendor already declined it).
    """
    exclude = exclude or set()
    table: dict[int, list[ChampionBid]] = {item.id: [] for item in requisition_items}
    for sequence, quote in enumerate(quotations):
        for item_id in table:
            if (item_id, quote.vendor_id) in exclude:
                continue
            best = None
            for quote_item in sorted(quote.items, key=lambda qi: qi.id):
                if quote_item.requisition_item_id != item_id:
                    continue
                breakdown = breakdowns[quote_item.id]
                if best is None or breakdown.final_score > best.score:
                    best = ChampionBid(
                        requisition_item_id=item_id,
                        vendor_id=quote.vendor_id,
                        quotation_id=quote.id,
                        quote_item_id=quote_item.id,
                        score=breakdown.final_score,
                        unit_price=quote_item.unit_price,
                        quantity=quote_item.quantity,
                        breakdown=breakdown,
                        sequence=sequence,
                    )
            if best is not None:
                table[item_id].append(best)
    return table


def single_vendor_view(
    champions: dict[int, list[ChampionBid]],
    standby_limit: int = DEFAULT_STANDBY_LIMIT,
) -> SingleVendorView:
    by_vendor: dict[int, VendorScore] = {}
    sequence: dict[int, int] = {}
    for bids in champions.values():
        for bid in bids:
            if bid.vendor_id not in by_vendor:
                by_vendor[bid.vendor_id] = VendorScore(
                    vendor_id=bid.vendor_id, quotation_id=bid.quotation_id, final_vendor_score=0.0,
                )
                sequence[bid.vendor_id] = bid.sequence
            by_vendor[bid.vendor_id].champion_bids.append(bid)

    # Submission order first so the stable sort below breaks ties by it
    vendors = sorted(by_vendor.values(), key=lambda v: sequence[v.vendor_id])
    for vendor in vendors:
        scores = [b.score for b in vendor.champion_bids]
        vendor.final_vendor_score = sum(scores) / len(scores)
    ranked = sorted(vendors, key=lambda v: v.final_vendor_score, reverse=True)
    return SingleVendorView(ranked_vendors=ranked, standby_limit=standby_limit)


def per_item_view(
    champions: dict[int, list[ChampionBid]],
    standby_limit: int = DEFAULT_STANDBY_LIMIT,
) -> PerItemView:
    return PerItemView(items=[
        ItemRanking(
            requisition_item_id=item_id,
            ranked_bids=sorted(bids, key=lambda b: b.score, reverse=True),
            standby_limit=standby_limit,
        )
        for item_id, bids in champions.items()
    ])


def compute_award_views(
    requisition,
    *,
    exclude: set[tuple[int, int]] | None = None,
    standby_limit: int = DEFAULT_STANDBY_LIMIT,
) -> AwardViews:
    """Rank every eligible bid of ``requisition`` under both award strategies."""
    if requisition.evaluation_criteria is None:
        return AwardViews.unavailable("Requisition has no evaluation criteria; award determination unavailable")
    criteria = validate_criteria(requisition.evaluation_criteria)

    quotations = eligible_quotations(requisition.quotations)
    breakdowns = score_breakdowns(criteria, quotations)
    champions = champion_bids(requisition.items, quotations, breakdowns, exclude=exclude)

    views = AwardViews(
        available=True,
        single_vendor=single_vendor_view(champions, standby_limit),
        per_item=per_item_view(champions, standby_limit),
        breakdowns=breakdowns,
    )
    logger.debug(
        "Award views computed: %d eligible quotation(s), %d unawardable item(s)",
        len(quotations), len(views.per_item.unawardable_item_ids),
        extra={"requisition_id": requisition.id},
    )
    return views
