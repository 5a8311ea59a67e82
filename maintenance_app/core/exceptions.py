"""
Platform-wide exception hierarchy.

Every service in the maintenance-period core raises one of these types.
Blueprints register handlers against them once and get consistent HTTP
status codes and machine-readable error codes everywhere.

    ValidationError     400  malformed or missing input, business rule broken
    NotFoundError       404  period / assignment / record / catalog item / collaborator
    AuthorizationError  403  principal not allowed to act on the record
    StateError          409  state-machine violation (double completion, inactive period)
    ConflictError       409  duplicate assignment

None of these is retried by the core; callers decide retry/backoff.

Usage:
    from maintenance_app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MaintenancePeriod", resource_id=42)
    raise ValidationError("end_at must be after start_at", details={"end_at": "..."})
"""


class NotFoundError(Exception):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "MaintenancePeriod", "CatalogItem").
        resource_id: The key that was looked up. Included in the message.
        message: Optional override for the default "<resource> id=<id> not found".
    """

    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if message is None:
            message = f"{resource}"
            if resource_id is not None:
                message += f" id={resource_id}"
            message += " not found"
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when a collaborator acts on a record they are not bound to.

    Args:
        collaborator_id: The acting principal.
        message: Human-readable explanation.
    """

    code = "ERR_FORBIDDEN"

    def __init__(self, collaborator_id: int | None, message: str) -> None:
        self.collaborator_id = collaborator_id
        super().__init__(message)


class StateError(Exception):
    """Raised when a well-formed operation violates the state machine.

    Examples: completing an already-completed assignment, assigning work to
    an inactive period, deleting a period that still has completion records.

    Args:
        message: Human-readable explanation.
        current: The state that blocked the operation, when there is one.
        details: Extra structured payload for the HTTP response.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(
        self,
        message: str,
        current: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.current = current
        self.details = details or {}
        super().__init__(message)


class PeriodHasCompletionsError(StateError):
    """Raised when a period cannot be deleted because completion records reference it."""

    def __init__(self, period_id: int, record_count: int) -> None:
        self.period_id = period_id
        self.record_count = record_count
        super().__init__(
            f"Period {period_id} cannot be deleted: "
            f"{record_count} completion record(s) are attached to it",
            details={"record_count": record_count},
        )


class ConflictError(Exception):
    """Raised when an operation would create a duplicate assignment.

    Args:
        resource: Model name.
        field: The key that would be duplicated.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
