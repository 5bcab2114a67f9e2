"""FRESHROUTE — Error Taxonomy.

NotFound is represented as ``None`` and NoDataAvailable as a response status;
neither is an exception. Everything here is caught at the router boundary.
"""


class FreshRouteError(Exception):
    """Base class for all router-level failures."""

    kind = "error"

    def __init__(self, message: str, kind: str | None = None):
        if kind:
            self.kind = kind
        super().__init__(message)


class WindowValidationError(FreshRouteError):
    """Raised when a request window is rejected before any store access."""

    kind = "validation_error"


class UpstreamError(FreshRouteError):
    """Raised when the live provider cannot answer.

    ``kind`` is one of: credential_invalid | transport | rate_limited |
    provider_missing | upstream.
    """

    kind = "upstream"

    def __init__(self, message: str, kind: str | None = None, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message, kind)


class StoreError(FreshRouteError):
    """Raised by the storage layer when a read or write fails."""

    kind = "store_error"

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)
