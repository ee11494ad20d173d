from typing import Optional


class ErrorKind:
    CONFIGURATION = "configuration"
    GATEWAY = "gateway"
    AUTHENTICITY = "authenticity"
    MALFORMED = "malformed"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"


class BookingError(Exception):
    """Base for every failure the orchestration layer reports to its callers.

    Services hand these back inside result objects; routers translate the
    ``kind`` into an HTTP status.
    """

    kind: str = ""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class ConfigurationError(BookingError):
    """Tenant has payments disabled, no credential or no price. Not retryable."""

    kind = ErrorKind.CONFIGURATION


class GatewayError(BookingError):
    """Network, timeout or processor-side failure. Retryable by the caller."""

    kind = ErrorKind.GATEWAY


class AuthenticityError(BookingError):
    kind = ErrorKind.AUTHENTICITY


class MalformedEventError(BookingError):
    kind = ErrorKind.MALFORMED


class ConflictError(BookingError):
    kind = ErrorKind.CONFLICT


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(BookingError):
    kind = ErrorKind.VALIDATION
