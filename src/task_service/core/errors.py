"""Error taxonomy surfaced through the API error envelope."""

from typing import Any


class ServiceError(Exception):
    """Base class for errors rendered as ``{"error": {code, message, details}}``."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error envelope body."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class Unauthenticated(ServiceError):
    """Missing, invalid or expired bearer token."""

    code = "unauthenticated"
    status_code = 401


class Forbidden(ServiceError):
    """Valid token without the scope the operation needs."""

    code = "forbidden"
    status_code = 403

    def __init__(self, required_scope: str, granted: list[str] | None = None) -> None:
        super().__init__(
            f"Token lacks required scope '{required_scope}'",
            {"required_scope": required_scope, "granted_scopes": sorted(granted or [])},
        )


class InvalidParameter(ServiceError):
    """A request field failed validation."""

    code = "invalid_parameter"
    status_code = 400

    def __init__(
        self,
        parameter: str,
        provided_value: Any,
        message: str | None = None,
        expected_format: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"parameter": parameter, "provided_value": provided_value}
        if expected_format is not None:
            details["expected_format"] = expected_format
        super().__init__(message or f"Invalid value for '{parameter}'", details)
        self.parameter = parameter


class InvalidReference(ServiceError):
    """A field references an entity that does not exist."""

    code = "invalid_reference"
    status_code = 400

    def __init__(self, parameter: str, provided_value: Any, entity: str) -> None:
        super().__init__(
            f"{entity} {provided_value} referenced by '{parameter}' does not exist",
            {"parameter": parameter, "provided_value": provided_value},
        )
        self.parameter = parameter


class NotFound(ServiceError):
    """The addressed resource does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} {entity_id} not found",
            {"resource": entity.lower(), "id": entity_id},
        )


class RateLimitExceeded(ServiceError):
    """The token used up its request budget for the current window."""

    code = "rate_limit_exceeded"
    status_code = 429

    def __init__(self, limit: int, reset_at: int) -> None:
        super().__init__(
            f"Rate limit of {limit} requests per window exceeded",
            {"limit": limit, "reset_at": reset_at},
        )
        self.limit = limit
        self.reset_at = reset_at


class Internal(ServiceError):
    """Unclassified failure; the message never carries internal detail."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "An internal error occurred") -> None:
        super().__init__(message)
