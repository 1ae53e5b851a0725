"""
Requisition approval transitions (persisted).

Runs the pre-bid departmental sign-off and the post-bid review chain:

    submit   Draft | Rejected        → Pending_Approval | PreApproved
    approve  Pending_Approval        → PreApproved
             Pending_<Role>          → Pending_<NextRole> | PostApproved
    reject   Pending_Approval        → Rejected
             Pending_<Role>          → Pending_<PrevRole> | Award_Declined
             Partially_Closed        → Scoring_Complete

Each call: lock the requisition, authorize, validate, mutate, write one
audit row, commit.  Notifications for the new step are returned, never sent.

Usage:
    from award_engine.services.approval_service import transition_requisition

    result = transition_requisition(42, "approve", actor_id=7, comment="OK")
    for note in result["notifications"]:
        dispatcher.send(note)
"""

from __future__ import annotations

import logging

from flask import current_app

from award_engine.core.exceptions import InvalidTransition, NotFoundError, Unauthorized, ValidationError
from award_engine.models import db
from award_engine.models.audit import write_audit
from award_engine.models.requisition import Requisition
from award_engine.services import approval_chain, directory, notifications
from award_engine.services.notifications import Notification
from award_engine.services.status import (
    AwardDetailStatus,
    PendingReview,
    QuotationStatus,
    RequisitionStatus,
    parse_status,
)
from award_engine.utils.helpers import load_requisition_for_update, transaction

logger = logging.getLogger(__name__)

ACTIONS = ("submit", "approve", "reject")

_SUBMITTABLE = (RequisitionStatus.DRAFT.value, RequisitionStatus.REJECTED.value)


def _chain(req) -> list[str]:
    return list(req.review_chain or [])


def _is_review_step(req) -> bool:
    try:
        return isinstance(parse_status(req.status, _chain(req)), PendingReview)
    except ValueError:
        return False


def _authorize(req, actor_id: int, action: str) -> None:
    approval_chain.check_authorization(
        req.status,
        _chain(req),
        actor_id=actor_id,
        actor_roles=directory.user_roles(actor_id),
        current_approver_id=req.current_approver_id,
        admin_roles=current_app.config.get("ADMIN_ROLES", []),
        procurement_roles=current_app.config.get("PROCUREMENT_ROLES", []),
        action=action,
    )


# ── Transitions ──────────────────────────────────────────────────────────────

def _submit(req, actor_id: int, comment: str | None) -> tuple[str, str, list[Notification]]:
    if req.status not in _SUBMITTABLE:
        raise InvalidTransition("submit", req.status, allowed_from=list(_SUBMITTABLE))
    if actor_id != req.requester_id and not directory.is_admin(directory.user_roles(actor_id)):
        raise Unauthorized(actor_id, "submit", req.status, required_user_id=req.requester_id)

    head_id = directory.department_head(req.department_id)
    req.approver_comment = comment
    if head_id is None:
        req.status = RequisitionStatus.PRE_APPROVED.value
        req.current_approver_id = None
        return (
            "requisition.submit",
            "Submitted; department has no head, requisition pre-approved.",
            [Notification([req.requester_id], notifications.REQUISITION_DECIDED,
                          {"requisition_id": req.id, "status": req.status})],
        )
    req.status = RequisitionStatus.PENDING_APPROVAL.value
    req.current_approver_id = head_id
    return (
        "requisition.submit",
        f"Submitted for departmental approval by user {head_id}.",
        [Notification([head_id], notifications.REQUISITION_SUBMITTED,
                      {"requisition_id": req.id, "title": req.title})],
    )


def _decide_departmental(req, action: str, comment: str | None) -> tuple[str, str, list[Notification]]:
    approved = action == "approve"
    req.status = (RequisitionStatus.PRE_APPROVED if approved else RequisitionStatus.REJECTED).value
    req.current_approver_id = None
    req.approver_comment = comment
    return (
        f"requisition.{action}",
        "Departmental approval granted." if approved else "Rejected at departmental approval.",
        [Notification([req.requester_id], notifications.REQUISITION_DECIDED,
                      {"requisition_id": req.id, "status": req.status, "comment": comment})],
    )


def _reopen_partial_closure(req) -> None:
    """Drop the pending part of a per-item award; accepted items and lost offers stay."""
    keep = {
        AwardDetailStatus.ACCEPTED.value,
        AwardDetailStatus.DECLINED.value,
        AwardDetailStatus.FAILED_TO_AWARD.value,
    }
    for detail in list(req.award_details):
        if detail.status not in keep:
            req.award_details.remove(detail)
    db.session.flush()
    active_vendors = {d.vendor_id for d in req.award_details if d.status == AwardDetailStatus.ACCEPTED.value}
    for quote in req.quotations:
        if quote.status != QuotationStatus.DECLINED.value and quote.vendor_id not in active_vendors:
            quote.status = QuotationStatus.SUBMITTED.value
            quote.rank = None
            quote.response_deadline = None


def _decide_review(req, action: str, comment: str | None) -> tuple[str, str, list[Notification]]:
    chain = _chain(req)
    holders = directory.resolve_role_holders
    if action == "approve":
        if req.status == RequisitionStatus.PARTIALLY_CLOSED.value:
            raise InvalidTransition(
                "approve", req.status, reason="a partial closure settles through vendor responses",
            )
        step = approval_chain.advance(req.status, chain, holders)
        audit_action, template = "award.approve_step", notifications.REVIEW_REQUESTED
    else:
        step = approval_chain.rewind(req.status, chain, holders)
        audit_action, template = "award.reject_step", notifications.REVIEW_REJECTED
        if req.status == RequisitionStatus.PARTIALLY_CLOSED.value:
            _reopen_partial_closure(req)

    req.status = step.status
    req.current_approver_id = step.approver_id
    req.approver_comment = comment
    return audit_action, step.details, notifications.for_review_step(req, step, template)


def transition_requisition(
    requisition_id: int,
    action: str,
    actor_id: int,
    comment: str | None = None,
) -> dict:
    """
    Execute one approval transition.

    Returns:
        {"requisition_id", "action", "previous_status", "new_status",
         "current_approver_id", "notifications": [Notification, ...]}

    Raises:
        InvalidTransition, Unauthorized, ValidationError, NotFoundError
    """
    if action not in ACTIONS:
        raise ValidationError(f"Unknown action: {action}", details={"allowed": list(ACTIONS)})

    with transaction():
        req = load_requisition_for_update(requisition_id)
        previous_status = req.status
        previous_approver = req.current_approver_id

        if action == "submit":
            audit_action, details, notes = _submit(req, actor_id, comment)
        elif req.status == RequisitionStatus.PENDING_APPROVAL.value:
            _authorize(req, actor_id, action)
            audit_action, details, notes = _decide_departmental(req, action, comment)
        elif req.status == RequisitionStatus.PARTIALLY_CLOSED.value or _is_review_step(req):
            _authorize(req, actor_id, action)
            audit_action, details, notes = _decide_review(req, action, comment)
        else:
            raise InvalidTransition(action, req.status, reason="requisition is not awaiting a decision")

        db.session.flush()
        if comment:
            details = f"{details} Comment: {comment}"
        write_audit(
            entity_type="requisition",
            entity_id=req.id,
            action=audit_action,
            actor=actor_id,
            transaction_id=req.transaction_id,
            details=details,
            diff={
                "status": {"old": previous_status, "new": req.status},
                "current_approver_id": {"old": previous_approver, "new": req.current_approver_id},
            },
        )
        result = {
            "requisition_id": req.id,
            "action": action,
            "previous_status": previous_status,
            "new_status": req.status,
            "current_approver_id": req.current_approver_id,
            "notifications": notes,
        }

    logger.info(
        "Requisition %s: %s",
        action, details,
        extra={
            "requisition_id": requisition_id,
            "actor_id": actor_id,
            "action": audit_action,
            "from_status": previous_status,
            "to_status": result["new_status"],
        },
    )
    return result


def batch_transition(
    requisition_ids: list[int],
    action: str,
    actor_id: int,
    comment: str | None = None,
) -> dict:
    """
    Apply one action to several requisitions.  Partial success allowed:
    each requisition is its own transaction.

    Returns:
        {"success": [...], "errors": [...]}
    """
    results = {"success": [], "errors": []}
    for req_id in requisition_ids:
        try:
            results["success"].append(transition_requisition(req_id, action, actor_id, comment))
        except (ValidationError, Unauthorized, NotFoundError) as e:
            results["errors"].append({
                "requisition_id": req_id,
                "error": str(e),
                "error_type": type(e).__name__,
            })
    return results


def get_available_actions(requisition: Requisition, actor_id: int | None = None) -> list[str]:
    """Actions that apply to ``requisition`` now, optionally filtered to those
    ``actor_id`` is authorized to take."""
    status = requisition.status
    if status in _SUBMITTABLE:
        actions = ["submit"]
    elif status == RequisitionStatus.PENDING_APPROVAL.value or _is_review_step(requisition):
        actions = ["approve", "reject"]
    elif status == RequisitionStatus.PARTIALLY_CLOSED.value:
        actions = ["reject"]
    else:
        actions = []

    if actor_id is None or not actions:
        return actions
    if actions == ["submit"]:
        allowed = actor_id == requisition.requester_id or directory.is_admin(directory.user_roles(actor_id))
        return actions if allowed else []
    try:
        _authorize(requisition, actor_id, actions[0])
    except Unauthorized:
        return []
    return actions
