"""Error codes and exceptions surfaced in discovery responses."""

VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
EMPTY_QUERY = "EMPTY_QUERY"
EMBEDDING_REQUIRED = "EMBEDDING_REQUIRED"
SEARCH_FAILED = "SEARCH_FAILED"
NOT_FOUND = "NOT_FOUND"
BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"


class DiscoveryError(Exception):
    """Base exception for discovery turns."""
    code = INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(DiscoveryError):
    """Request failed validation; the message is shown to the user."""
    code = VALIDATION_ERROR
