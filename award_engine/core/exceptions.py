"""
Engine-wide exception hierarchy.

Every service raises these types so callers (request handlers, CLI
commands, batch jobs) can map them to a response once.  Each carries a
``to_dict()`` with enough structure for a UI to explain why an action is
unavailable, not only that it is.

Usage:
    from award_engine.core.exceptions import InvalidTransition, NotFoundError

    raise NotFoundError(resource="Requisition", resource_id=42)
    raise InvalidTransition("reject", current_status="Draft",
                            allowed_from=["Pending_Approval"])

Expected operational states are results, not exceptions:
    - an item nobody can win  → ``ItemRanking.no_eligible_bids``
    - a decline with no standby left → ``AwardResponseResult.outcome``
      == ``"exhausted_standbys"``
"""


class NotFoundError(Exception):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable model name (e.g. "Requisition", "Quotation").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {
            "error": "not_found",
            "message": str(self),
            "resource": self.resource,
            "resource_id": self.resource_id,
        }


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
    """

    error_code = "validation_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": str(self), "details": self.details}


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique record.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")

    def to_dict(self) -> dict:
        return {"error": "conflict", "message": str(self), "resource": self.resource, "field": self.field}


class InvalidTransition(ValidationError):
    """The requested action does not apply to the requisition's current status.

    Always raised before any mutation.  The message names the current
    status and the attempted action.
    """

    error_code = "invalid_transition"

    def __init__(
        self,
        action: str,
        current_status: str,
        allowed_from: list[str] | tuple[str, ...] | None = None,
        reason: str | None = None,
    ) -> None:
        self.action = action
        self.current_status = current_status
        self.allowed_from = list(allowed_from or [])
        self.reason = reason
        msg = f"Cannot '{action}' from status '{current_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={
            "action": action,
            "current_status": current_status,
            "required_status": self.allowed_from,
            "reason": reason,
        })


class Unauthorized(Exception):
    """Actor does not satisfy the authorization rule for the current step.

    Kept apart from InvalidTransition so callers can return an
    access-denied signal rather than a state conflict.
    """

    def __init__(
        self,
        actor_id: int | str | None,
        action: str,
        current_status: str,
        required_roles: list[str] | None = None,
        required_user_id: int | None = None,
    ) -> None:
        self.actor_id = actor_id
        self.action = action
        self.current_status = current_status
        self.required_roles = list(required_roles or [])
        self.required_user_id = required_user_id
        roles = f" (requires one of: {', '.join(self.required_roles)})" if self.required_roles else ""
        super().__init__(
            f"User {actor_id} may not '{action}' requisition at status '{current_status}'{roles}"
        )

    def to_dict(self) -> dict:
        return {
            "error": "unauthorized",
            "message": str(self),
            "details": {
                "actor_id": self.actor_id,
                "action": self.action,
                "current_status": self.current_status,
                "required_roles": self.required_roles,
                "required_user_id": self.required_user_id,
            },
        }


class IncompleteEvaluationData(ValidationError):
    """Evaluation criteria are missing or their weights do not sum to 100."""

    error_code = "incomplete_evaluation_data"
