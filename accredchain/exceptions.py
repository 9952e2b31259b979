"""Exception taxonomy for AccredChain.

Every failure surfaced by the services is one of the classes below. Each
carries the HTTP status the API layer maps it to, and a stable ``code``
string used in JSON error bodies.
"""
from typing import Any


class AccredError(Exception):
    """Base exception for all AccredChain errors."""

    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(AccredError):
    """Malformed or missing input."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str = "", errors: list[dict[str, str]] | None = None):
        super().__init__(message or "Invalid request")
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class Unauthorized(AccredError):
    """Authentication failed or is missing."""

    status_code = 401
    code = "unauthorized"


class Forbidden(AccredError):
    """Authenticated but not entitled to perform this action."""

    status_code = 403
    code = "forbidden"


class NotFound(AccredError):
    """Requested resource does not exist."""

    status_code = 404
    code = "not_found"


class Conflict(AccredError):
    """Duplicate unique key or illegal state transition."""

    status_code = 409
    code = "conflict"


class StoreUnavailable(AccredError):
    """Underlying persistence failed."""

    status_code = 503
    code = "store_unavailable"


def validation_error_from_pydantic(exc: Any) -> ValidationError:
    """Convert a ``pydantic.ValidationError`` into the domain ValidationError.

    Field paths are joined with dots; model-level errors use the field name
    ``payload``.
    """
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "payload"
        message = err.get("msg", "Invalid value")
        # model_validator errors arrive as "Value error, <message>"
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": loc, "message": message})
    return ValidationError("Invalid request", errors=errors)
