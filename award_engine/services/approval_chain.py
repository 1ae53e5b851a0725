"""
Approval Chain Resolver (pure).

Moves a requisition along its post-bid review chain.  The chain is an
ordered list of role names; review states are ``Pending_<Role>`` and are
decoded with ``parse_status`` into ``PendingReview(role, index)``.

    enter_chain(chain, holders)            → first review step or PostApproved
    advance(status, chain, holders)        → next step or PostApproved
    rewind(status, chain, holders)         → previous step or Award_Declined
    check_authorization(status, chain, …)  → raises Unauthorized

``holders`` is a callable ``role_name -> [user_id, ...]``.  Nothing here
touches the session; approval_service and award_lifecycle persist the
resulting ``StepResult``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from award_engine.core.exceptions import InvalidTransition, Unauthorized, ValidationError
from award_engine.services.status import (
    PendingReview,
    RequisitionStatus,
    normalize_role,
    parse_status,
    pending_status,
)

HolderResolver = Callable[[str], list[int]]


@dataclass(frozen=True)
class StepResult:
    status: str
    approver_id: int | None
    details: str
    # Role whose holders act next (None outside review states)
    next_role: str | None = None


def _approver_for(role: str, holders: HolderResolver) -> int | None:
    """Single holder → that user; several (a committee) → None; none → error."""
    user_ids = holders(role)
    if not user_ids:
        raise ValidationError(
            f"No active user holds the role '{role}'; the review chain cannot continue",
            details={"role": role},
        )
    return user_ids[0] if len(user_ids) == 1 else None


def _review_step(action: str, status: str, chain: list[str]) -> PendingReview:
    try:
        parsed = parse_status(status, chain)
    except ValueError as exc:
        raise InvalidTransition(action, status, reason=str(exc)) from exc
    if not isinstance(parsed, PendingReview):
        raise InvalidTransition(action, status, allowed_from=[pending_status(r) for r in chain])
    return parsed


def enter_chain(chain: list[str], holders: HolderResolver) -> StepResult:
    if not chain:
        return StepResult(
            status=RequisitionStatus.POST_APPROVED.value,
            approver_id=None,
            details="No review required; award approved.",
        )
    first = chain[0]
    return StepResult(
        status=pending_status(first),
        approver_id=_approver_for(first, holders),
        details=f"Award sent for review by {first}.",
        next_role=first,
    )


def advance(status: str, chain: list[str], holders: HolderResolver) -> StepResult:
    """Approve the current review step."""
    step = _review_step("approve", status, chain)
    if step.index == len(chain) - 1:
        return StepResult(
            status=RequisitionStatus.POST_APPROVED.value,
            approver_id=None,
            details=f"Approved by {step.role}; final review step complete, award approved.",
        )
    next_role = chain[step.index + 1]
    return StepResult(
        status=pending_status(next_role),
        approver_id=_approver_for(next_role, holders),
        details=f"Approved by {step.role}; moved to {pending_status(next_role)}.",
        next_role=next_role,
    )


def rewind(status: str, chain: list[str], holders: HolderResolver) -> StepResult:
    """Reject the current review step: one step back, or out of the chain."""
    if status == RequisitionStatus.PARTIALLY_CLOSED.value:
        return StepResult(
            status=RequisitionStatus.SCORING_COMPLETE.value,
            approver_id=None,
            details="Partial closure rejected; returned to procurement review.",
        )
    step = _review_step("reject", status, chain)
    if step.index == 0:
        return StepResult(
            status=RequisitionStatus.AWARD_DECLINED.value,
            approver_id=None,
            details=f"Rejected by {step.role}; award recommendation declined.",
        )
    prev_role = chain[step.index - 1]
    return StepResult(
        status=pending_status(prev_role),
        approver_id=_approver_for(prev_role, holders),
        details=f"Rejected by {step.role}; returned to {pending_status(prev_role)}.",
        next_role=prev_role,
    )


def check_authorization(
    status: str,
    chain: list[str],
    *,
    actor_id: int,
    actor_roles: list[str],
    current_approver_id: int | None,
    admin_roles: list[str],
    procurement_roles: list[str],
    action: str = "approve",
) -> None:
    """Raise Unauthorized unless ``actor_id`` may decide at ``status``.

    Review steps: the current approver, any holder of the pending role, or
    an admin.  ``Pending_Approval``: the current approver or an admin.
    ``Partially_Closed``: a procurement role or an admin.
    """
    roles = {normalize_role(r) for r in actor_roles}
    admins = {normalize_role(r) for r in admin_roles}
    if roles & admins:
        return

    if status == RequisitionStatus.PARTIALLY_CLOSED.value:
        if roles & {normalize_role(r) for r in procurement_roles}:
            return
        raise Unauthorized(actor_id, action, status, required_roles=list(procurement_roles) + list(admin_roles))

    if status == RequisitionStatus.PENDING_APPROVAL.value:
        if current_approver_id is not None and actor_id == current_approver_id:
            return
        raise Unauthorized(
            actor_id, action, status, required_roles=list(admin_roles), required_user_id=current_approver_id,
        )

    step = _review_step(action, status, chain)
    if current_approver_id is not None and actor_id == current_approver_id:
        return
    if normalize_role(step.role) in roles:
        return
    raise Unauthorized(
        actor_id, action, status,
        required_roles=[step.role] + list(admin_roles),
        required_user_id=current_approver_id,
    )
