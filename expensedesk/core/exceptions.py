"""
Service-layer exception hierarchy.

Services raise these; the handlers registered in ``utils.errors`` turn them
into JSON error responses with consistent HTTP status codes.

Usage:
    from expensedesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Expense", resource_id=expense_id)
    raise ValidationError("amount must be positive", details={"amount": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Expense").
        resource_id: The id that was looked up. Logged, not returned.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Distinct from HTTP 400 (malformed input, caught in blueprint).
    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(ValidationError):
    """Raised when a lifecycle transition is not allowed from the current state.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, current: str, requested: str) -> None:
        self.resource = resource
        self.current = current
        self.requested = requested
        super().__init__(
            f"{resource} cannot move from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the acting user lacks authority for an operation.

    Maps to HTTP 403.
    """

    def __init__(self, action: str, user_id: str | None = None) -> None:
        self.action = action
        self.user_id = user_id
        super().__init__(f"Not allowed to {action}")


class WriteError(Exception):
    """Raised when the backend rejects a write. The session is rolled back first.

    Maps to HTTP 500.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Write failed during {operation}")
