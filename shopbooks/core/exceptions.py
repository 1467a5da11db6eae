"""
Engine error taxonomy.

Every error raised by the services derives from ShopBooksError and carries
the HTTP status and machine-readable code the API layer reports:

    ValidationError  400  malformed input, over-payment, refused transitions
    NotFoundError    404  unknown document/party/item/company
    ConflictError    409  numbering collision, lost conversion race, stale write
    DependencyError  502  inventory / counterparty collaborator failure
    FatalError       500  sequence exhaustion, broken totals invariant

Only ConflictError is retried automatically (see core.transactions).
"""
from typing import Optional

from fastapi import status


class ShopBooksError(Exception):
    """Base exception for engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        field: Optional[str] = None,
        line: Optional[int] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.field = field
        self.line = line
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {
            "error": self.message,
            "type": type(self).__name__,
            "code": self.error_code,
        }
        if self.field is not None:
            body["field"] = self.field
        if self.line is not None:
            body["line"] = self.line
        return body


class ValidationError(ShopBooksError):
    """Malformed input or a request the current state does not allow."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"


class NotFoundError(ShopBooksError):
    """Referenced entity does not exist (or belongs to another company)."""
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier, error_code: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}", error_code=error_code)


class ConflictError(ShopBooksError):
    """Concurrent writer got there first. Retried once before surfacing."""
    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class DependencyError(ShopBooksError):
    """An external collaborator (inventory, counterparty directory) failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "DEPENDENCY_FAILURE"


class FatalError(ShopBooksError):
    """The operation cannot continue without persisting inconsistent data."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "FATAL"


class SequenceExhaustedError(FatalError):
    default_code = "SEQUENCE_EXHAUSTED"


class InvariantViolation(FatalError):
    default_code = "INVARIANT_VIOLATION"
