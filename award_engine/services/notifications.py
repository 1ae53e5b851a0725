"""
Outbound notification requests.

The engine never sends anything itself: a transition returns the list of
``Notification`` values describing who should be told what, and the
caller dispatches them after the transition has committed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from award_engine.services import directory
from award_engine.services.status import RequisitionStatus

# Template keys understood by the dispatcher
REVIEW_REQUESTED = "award_review_requested"
REVIEW_REJECTED = "award_review_rejected"
AWARD_APPROVED = "award_fully_approved"
AWARD_OFFER = "award_offer"
AWARD_ACCEPTED = "award_accepted"
AWARD_EXHAUSTED = "award_standbys_exhausted"
RFQ_REISSUED = "rfq_reissued_for_items"
REQUISITION_SUBMITTED = "requisition_submitted"
REQUISITION_DECIDED = "requisition_decided"


@dataclass
class Notification:
    recipient_ids: list[int]
    template: str
    data: dict = field(default_factory=dict)
    # Role to broadcast to when recipients are resolved by the dispatcher
    recipient_role: str | None = None

    def to_dict(self) -> dict:
        return {
            "recipient_ids": list(self.recipient_ids),
            "recipient_role": self.recipient_role,
            "template": self.template,
            "data": self.data,
        }


def to_procurement(template: str, data: dict) -> Notification:
    roles = current_app.config.get("PROCUREMENT_ROLES") or [None]
    return Notification(recipient_ids=[], template=template, data=data, recipient_role=roles[0])


def for_review_step(req, step, template: str) -> list[Notification]:
    """Who acts after ``step``: the single approver, the whole role, or procurement."""
    data = {"requisition_id": req.id, "title": req.title, "status": step.status}
    if step.status == RequisitionStatus.POST_APPROVED.value:
        return [to_procurement(AWARD_APPROVED, data)]
    if step.next_role is not None:
        if step.approver_id is not None:
            return [Notification(recipient_ids=[step.approver_id], template=template, data=data)]
        return [Notification(recipient_ids=[], template=template, data=data, recipient_role=step.next_role)]
    return [to_procurement(REVIEW_REJECTED, data)]


def award_offer(req, vendor_id: int, quote_item_ids: list[int], deadline) -> Notification:
    return Notification(
        recipient_ids=directory.vendor_user_ids(vendor_id),
        template=AWARD_OFFER,
        data={
            "requisition_id": req.id,
            "title": req.title,
            "vendor_id": vendor_id,
            "quote_item_ids": list(quote_item_ids),
            "response_deadline": deadline.isoformat() if deadline else None,
        },
    )


def rfq_invitation(req, vendor_id: int, item_ids: list[int], deadline) -> Notification:
    return Notification(
        recipient_ids=directory.vendor_user_ids(vendor_id),
        template=RFQ_REISSUED,
        data={
            "requisition_id": req.id,
            "title": req.title,
            "vendor_id": vendor_id,
            "requisition_item_ids": list(item_ids),
            "deadline": deadline.isoformat(),
        },
    )
