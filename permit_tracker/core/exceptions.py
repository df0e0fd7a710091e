"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against the base
class once and get consistent HTTP status codes and response bodies
everywhere.

Every workflow error carries:
    kind:        the machine-readable ErrorKind returned to callers
                 (``{"success": false, "error": kind, "message": ...}``)
    http_status: the status code blueprints answer with

Usage:
    from permit_tracker.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="Permit", resource_id="WP-1001")
    raise InvalidTransitionError("WP-1001", "Reviewer", "approve", "Active")
"""


class PermitWorkflowError(Exception):
    """Base class for every error surfaced to callers of the workflow core."""

    kind = "WorkflowError"
    http_status = 400

    def to_response(self) -> dict:
        return {"success": False, "error": self.kind, "message": str(self)}


class NotFoundError(PermitWorkflowError):
    """Raised when a requested permit, renewal or worker does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Permit", "Worker").
        resource_id: The business id that was looked up.
    """

    kind = "NotFoundError"
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PermitWorkflowError):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    kind = "ValidationError"
    http_status = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        body = super().to_response()
        if self.details:
            body["details"] = self.details
        return body


class PermitClosedError(PermitWorkflowError):
    """Raised for any action on a Closed permit. Closed is absorbing."""

    kind = "PermitClosedError"
    http_status = 409

    def __init__(self, permit_id: str) -> None:
        self.permit_id = permit_id
        super().__init__(f"Permit {permit_id} is closed; no further actions are allowed")


class InvalidTransitionError(PermitWorkflowError):
    """Raised when (role, action, status) is not a legal transition."""

    kind = "InvalidTransitionError"
    http_status = 409

    def __init__(
        self,
        entity_id: str,
        role: str,
        action: str,
        current: str | None,
        reason: str | None = None,
    ) -> None:
        msg = f"{role} cannot '{action}' {entity_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity_id = entity_id
        self.role = role
        self.action = action
        self.current_status = current
        self.reason = reason


class RoleBindingError(PermitWorkflowError):
    """Raised when the acting email is not the one bound to the claimed role."""

    kind = "RoleBindingError"
    http_status = 403

    def __init__(self, permit_id: str, role: str) -> None:
        self.permit_id = permit_id
        self.role = role
        super().__init__(f"Actor is not the {role} assigned to permit {permit_id}")


# ── Renewal proposal validation ──────────────────────────────────────────────


class RenewalValidationError(ValidationError):
    """Base for renewal-proposal validation failures."""

    kind = "RenewalValidationError"


class InvalidRenewalWindowError(RenewalValidationError):
    kind = "InvalidRenewalWindowError"

    def __init__(self, message: str = "Renewal end time must be after its start time") -> None:
        super().__init__(message)


class OutOfBoundsError(RenewalValidationError):
    kind = "OutOfBoundsError"

    def __init__(self, message: str = "Renewal must be within permit validity") -> None:
        super().__init__(message)


class DurationExceededError(RenewalValidationError):
    kind = "DurationExceededError"

    def __init__(self, max_hours: int | float = 8) -> None:
        self.max_hours = max_hours
        super().__init__(f"Max {max_hours:g} hours per clearance")


class OverlapError(RenewalValidationError):
    kind = "OverlapError"

    def __init__(
        self,
        message: str = "New renewal cannot overlap with previous approved renewal",
    ) -> None:
        super().__init__(message)


class PendingRenewalExistsError(RenewalValidationError):
    kind = "PendingRenewalExistsError"
    http_status = 409

    def __init__(self, message: str = "Previous renewal is still pending") -> None:
        super().__init__(message)


# ── Storage ──────────────────────────────────────────────────────────────────


class ConflictError(PermitWorkflowError):
    """Raised when a concurrent write keeps winning after all retries.

    Args:
        resource: Model name.
        resource_id: Business id of the contended row.
        attempts: How many validate-and-write cycles were tried.
    """

    kind = "ConflictError"
    http_status = 409

    def __init__(self, resource: str, resource_id: str, attempts: int) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.attempts = attempts
        super().__init__(
            f"{resource} {resource_id} was modified concurrently; "
            f"gave up after {attempts} attempt(s)"
        )


class StorageUnavailableError(PermitWorkflowError):
    """Raised when the database cannot be reached. Not retried by the core."""

    kind = "StorageUnavailableError"
    http_status = 503

    def __init__(self, message: str = "Record store is unavailable") -> None:
        super().__init__(message)
