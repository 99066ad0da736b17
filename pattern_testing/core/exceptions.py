"""
Workflow-wide exception hierarchy.

Every service module raises these types and nothing else for expected
failures. Blueprints register handlers against them once and get consistent
HTTP status codes everywhere.

Usage:
    from pattern_testing.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TestAssignment", resource_id=42)
    raise ValidationError("rating must be between 1 and 5", details={"rating": 7})
"""


class NotFoundError(Exception):
    """Raised when a referenced application, assignment, feedback, user or pattern does not exist.

    Args:
        resource: Human-readable entity name (e.g. "TestAssignment").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with existing state.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class DuplicatePendingApplication(ConflictError):
    """The user already has a testing application waiting for review."""

    def __init__(self, user_id: int, application_id: int) -> None:
        self.user_id = user_id
        self.application_id = application_id
        super().__init__(
            "User already has a pending application",
            details={"user_id": user_id, "application_id": application_id},
        )


class AlreadyCompletedError(ConflictError):
    """Completion was attempted on an assignment that is already completed.

    Guards the reward payout: rewards are paid exactly once.
    """

    def __init__(self, assignment_id: int) -> None:
        self.assignment_id = assignment_id
        super().__init__(
            "Assignment already completed",
            details={"assignment_id": assignment_id},
        )


class InvalidTransitionError(ValidationError):
    """A named lifecycle action is not allowed from the record's current status."""

    def __init__(self, entity: str, entity_id: int, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' {entity} {entity_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"action": action, "current_status": current})
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.current_status = current


class PermissionDenied(Exception):
    """Raised when the acting user is not the tester, creator or admin the action requires."""

    def __init__(self, user_id: int | None, action: str, reason: str | None = None):
        msg = f"User {user_id} does not have permission for '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.user_id = user_id
        self.action = action
