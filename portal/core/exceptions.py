"""
Portal-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``portal.utils.errors.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Usage:
    from portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Client", resource_id=client_id)
    raise ValidationError("feedback is required", details={"feedback": "empty"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Client", "AppForm").
        resource_id: The PK that was looked up. Included in logs and message.
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
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the caller's role may not perform the action. Maps to HTTP 403."""

    def __init__(self, profile_id: str | None, required_role: str) -> None:
        self.profile_id = profile_id
        self.required_role = required_role
        super().__init__(f"Profile {profile_id} lacks role '{required_role}'")


class GatewayError(Exception):
    """Raised when the hosted auth or storage service rejects a call.

    Maps to HTTP 502.
    """

    def __init__(self, operation: str, status_code: int | None = None, detail: str | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        msg = f"{operation} failed"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
