"""Domain errors shared by the request, match and message services.

Learn: Services raise these; routers translate them into HTTP status
codes. Nothing below the API layer knows about HTTP.

  ValidationError     → 400  malformed or missing input
  AuthorizationError  → 403  caller is not allowed to touch this record
  NotFoundError       → 404  unknown request / match id
  InvalidStateError   → 409  state machine violation (double accept, ...)
  StorageError        → 503  database unavailable; the write was rolled back
"""


class HelpMatchError(Exception):
    """Base class for all domain errors."""


class ValidationError(HelpMatchError):
    """Raised when input is missing or malformed."""


class AuthorizationError(HelpMatchError):
    """Raised when the caller is not permitted to perform the operation."""


class NotFoundError(HelpMatchError):
    """Raised when a request or match does not exist."""


class InvalidStateError(HelpMatchError):
    """Raised when a transition is not allowed from the current status."""


class StorageError(HelpMatchError):
    """Raised when the database fails mid-operation."""
