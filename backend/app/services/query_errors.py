"""Error taxonomy for the query workflow.

Every command either succeeds or raises one of these.  ``kind`` is the stable
identifier callers branch on; ``status_code`` is what the API layer returns.
"""


class QueryWorkflowError(Exception):
    """Base exception for query workflow errors."""

    kind = "workflow_error"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(QueryWorkflowError):
    """Missing or malformed input; nothing was changed."""

    kind = "validation_error"
    status_code = 400


class MissingReason(ValidationError):
    """A revert was submitted without a stated reason."""

    kind = "missing_reason"


class NotFound(QueryWorkflowError):
    kind = "not_found"
    status_code = 404


class QueryNotFound(NotFound):
    kind = "query_not_found"


class ApplicationNotFound(NotFound):
    kind = "application_not_found"


class RequestNotFound(NotFound):
    kind = "request_not_found"


class InvalidStateTransition(QueryWorkflowError):
    kind = "invalid_state_transition"
    status_code = 409


class RequestAlreadyProcessed(InvalidStateTransition):
    """A decision was already recorded for this approval request."""

    kind = "request_already_processed"


class AuthorizationError(QueryWorkflowError):
    kind = "authorization_error"
    status_code = 403


class StorageError(QueryWorkflowError):
    """The persistence layer failed; the operation had no effect."""

    kind = "storage_error"
    status_code = 503
