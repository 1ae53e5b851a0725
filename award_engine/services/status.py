"""
Requisition / quotation / award status vocabulary.

Fixed requisition states are a ``str`` enum.  Post-bid review states are
not enumerated: they are generated from the ordered review chain as
``Pending_<Role>`` and parsed back into a ``PendingReview`` carrying the
role's index in that chain.

Usage:
    from award_engine.services.status import parse_status, pending_status

    pending_status("Director")                   # "Pending_Director"
    parse_status("Pending_Director", ["Committee", "Director"])
    # -> PendingReview(role="Director", index=1)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from award_engine.core.exceptions import ValidationError

PENDING_PREFIX = "Pending_"


class RequisitionStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_APPROVAL = "Pending_Approval"        # departmental sign-off
    REJECTED = "Rejected"
    PRE_APPROVED = "PreApproved"
    ACCEPTING_QUOTES = "Accepting_Quotes"
    SCORING_IN_PROGRESS = "Scoring_In_Progress"
    SCORING_COMPLETE = "Scoring_Complete"        # procurement officer's review state
    POST_APPROVED = "PostApproved"
    AWARDED = "Awarded"                          # offers out to vendors
    PARTIALLY_CLOSED = "Partially_Closed"
    AWARD_DECLINED = "Award_Declined"
    READY_FOR_PO = "Ready_For_PO"


class QuotationStatus(str, Enum):
    SUBMITTED = "Submitted"
    STANDBY = "Standby"
    AWARDED = "Awarded"
    PARTIALLY_AWARDED = "Partially_Awarded"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    REJECTED = "Rejected"
    FAILED = "Failed"
    INVOICE_SUBMITTED = "Invoice_Submitted"


class AwardDetailStatus(str, Enum):
    AWARDED = "Awarded"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    STANDBY = "Standby"
    FAILED_TO_AWARD = "Failed_to_Award"


class AwardStrategy(str, Enum):
    SINGLE_VENDOR = "single_vendor"
    PER_ITEM = "per_item"


# Requisition states in which bidding has opened; criteria are frozen.
BIDDING_OPENED = frozenset({
    RequisitionStatus.ACCEPTING_QUOTES,
    RequisitionStatus.SCORING_IN_PROGRESS,
    RequisitionStatus.SCORING_COMPLETE,
    RequisitionStatus.POST_APPROVED,
    RequisitionStatus.AWARDED,
    RequisitionStatus.PARTIALLY_CLOSED,
    RequisitionStatus.AWARD_DECLINED,
    RequisitionStatus.READY_FOR_PO,
})


@dataclass(frozen=True)
class PendingReview:
    """A post-bid review state: waiting on ``role``, position ``index`` in the chain."""

    role: str
    index: int

    @property
    def value(self) -> str:
        return pending_status(self.role)

    def __str__(self) -> str:
        return self.value


def normalize_role(role_name: str) -> str:
    return role_name.strip().replace(" ", "_")


def pending_status(role_name: str) -> str:
    return f"{PENDING_PREFIX}{normalize_role(role_name)}"


def validate_chain(chain: list[str]) -> list[str]:
    """Return the chain unchanged, or raise ValidationError if it cannot be encoded.

    A role may appear once, and no role may render to a fixed status
    (``Pending_Approval`` belongs to the pre-bid chain).
    """
    seen = set()
    fixed = {s.value for s in RequisitionStatus}
    for role in chain:
        if not role or not role.strip():
            raise ValidationError("Review chain contains an empty role name", details={"role": role})
        status = pending_status(role)
        if status in fixed:
            raise ValidationError(
                f"Role '{role}' collides with fixed status '{status}'",
                details={"role": role, "status": status},
            )
        if status in seen:
            raise ValidationError(
                f"Role '{role}' appears more than once in the review chain",
                details={"role": role, "chain": list(chain)},
            )
        seen.add(status)
    return chain


def parse_status(value: str, chain: list[str] | None = None) -> RequisitionStatus | PendingReview:
    """Decode a stored status string.

    Fixed states win over review states.  A ``Pending_<Role>`` value whose
    role is not in ``chain`` raises ValueError: the requisition points at a
    step that no longer exists.
    """
    try:
        return RequisitionStatus(value)
    except ValueError:
        pass
    if value.startswith(PENDING_PREFIX):
        for index, role in enumerate(chain or []):
            if pending_status(role) == value:
                return PendingReview(role=role, index=index)
    raise ValueError(f"Unknown requisition status '{value}' for review chain {chain or []}")


