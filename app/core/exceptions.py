"""
Platform-wide exception hierarchy.

Services raise these; the app-level error handlers map them to HTTP
status codes once, so blueprints stay free of per-service exception types.

Usage:
    from app.core.exceptions import NotFoundError, SignalStarvationError, ValidationError

    raise NotFoundError(resource="Project", resource_id=pid)
    raise ValidationError("breach_days must be >= risk_days", details={...})
    raise SignalStarvationError("Failed to load governance signals", errors={...})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
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

    Distinct from HTTP 400 (malformed input, caught in blueprint): this
    exception signals that the data was well-formed but violated a business
    rule (e.g. inconsistent thresholds).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class SignalStarvationError(Exception):
    """Raised when every governance signal source failed.

    Partial failures never raise; they are reported per source.  Only total
    starvation (no source, primary included, produced data) becomes one
    fatal, user-visible error.  Maps to HTTP 503.

    Args:
        message: Banner text shown to the user.
        errors: Sanitised per-source error strings keyed by source name.
    """

    def __init__(self, message: str, errors: dict | None = None) -> None:
        self.errors = errors or {}
        super().__init__(message)
