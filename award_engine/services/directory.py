"""
Directory & review-chain lookups.

Database-backed implementations of the collaborators the approval chain
and award lifecycle consult:

    resolve_role_holders(role_name) -> [user_id, ...]
    user_roles(user_id)             -> [role_name, ...]
    department_head(department_id)  -> user_id | None
    review_chain(award_value)       -> [role_name, ...]   (ordered)

The review chain comes from the approval matrix (``ApprovalThreshold``
tiers); when no tier is configured at all the ``REVIEW_CHAIN`` setting is
used.  An empty chain means the award needs no post-bid review.
"""

from __future__ import annotations

import logging

from flask import current_app

from award_engine.core.exceptions import ValidationError
from award_engine.models import db
from award_engine.models.directory import ApprovalStep, ApprovalThreshold, Department, Role, User
from award_engine.services.status import normalize_role, validate_chain

logger = logging.getLogger(__name__)


def resolve_role_holders(role_name: str) -> list[int]:
    """Active users holding ``role_name`` (spaces and underscores are equivalent)."""
    wanted = normalize_role(role_name)
    users = (
        User.query
        .join(User.roles)
        .filter(User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )
    return [
        u.id for u in users
        if any(normalize_role(r.name) == wanted for r in u.roles)
    ]


def user_roles(user_id: int) -> list[str]:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return []
    return user.role_names


def department_head(department_id: int | None) -> int | None:
    if department_id is None:
        return None
    dept = db.session.get(Department, department_id)
    return dept.head_id if dept else None


def vendor_user_ids(vendor_id: int) -> list[int]:
    """Active users acting for ``vendor_id``; award offers go to them."""
    users = User.query.filter_by(vendor_id=vendor_id, is_active=True).order_by(User.id).all()
    return [u.id for u in users]


def user_vendor_id(user_id: int) -> int | None:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user.vendor_id


def review_chain(award_value: float | None = None) -> list[str]:
    """Ordered reviewing roles for an award of ``award_value``.

    Raises:
        ValidationError: tiers exist but none covers the value.
    """
    tiers = ApprovalThreshold.query.order_by(ApprovalThreshold.min_amount).all()
    if not tiers:
        return validate_chain(list(current_app.config.get("REVIEW_CHAIN") or []))

    value = award_value or 0.0
    for tier in tiers:
        if tier.contains(value):
            logger.debug("Award value %.2f matched approval tier '%s'", value, tier.name)
            return validate_chain(tier.role_chain)

    raise ValidationError(
        f"No approval tier found for an award value of {value:,.2f}. "
        "Please configure the approval matrix.",
        details={"award_value": value},
    )


def is_admin(roles: list[str]) -> bool:
    admin = {normalize_role(r) for r in current_app.config.get("ADMIN_ROLES", [])}
    return any(normalize_role(r) in admin for r in roles)


def procurement_role_names() -> list[str]:
    return list(current_app.config.get("PROCUREMENT_ROLES", [])) + list(current_app.config.get("ADMIN_ROLES", []))


def is_procurement(roles: list[str]) -> bool:
    procurement = {normalize_role(r) for r in current_app.config.get("PROCUREMENT_ROLES", [])}
    return is_admin(roles) or any(normalize_role(r) in procurement for r in roles)


def seed_approval_matrix(tiers: list[dict]) -> int:
    """Replace the approval matrix with ``tiers``.

    Each tier: ``{"name", "min_amount", "max_amount", "steps": [role, ...]}``.
    Roles named in steps are created if missing.  Returns the tier count.
    """
    for existing in ApprovalThreshold.query.all():
        db.session.delete(existing)
    db.session.flush()
    for entry in tiers:
        validate_chain(entry.get("steps", []))
        tier = ApprovalThreshold(
            name=entry["name"],
            min_amount=entry.get("min_amount", 0.0),
            max_amount=entry.get("max_amount"),
        )
        for order, role_name in enumerate(entry.get("steps", []), start=1):
            if not Role.query.filter_by(name=role_name).first():
                db.session.add(Role(name=role_name))
            tier.steps.append(ApprovalStep(order=order, role_name=role_name))
        db.session.add(tier)
    db.session.flush()
    return len(tiers)
