class FinanceSyncError(Exception):
    """Base exception for the finance sync backend."""

    pass


class UnsupportedAlgorithmError(FinanceSyncError):
    """Raised when a webhook signature uses a digest we do not accept."""

    def __init__(self, algorithm: str):
        self.algorithm = algorithm
        super().__init__(f"Unsupported digest algorithm '{algorithm}'")


class DuplicateEventError(FinanceSyncError):
    """Raised by an event store when the event id is already recorded."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event '{event_id}' is already recorded")


class TokenRefreshError(FinanceSyncError):
    """Raised when the banking aggregator refuses to issue a fresh token."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Token refresh failed for user '{user_id}'")


class AggregatorAPIError(FinanceSyncError):
    """Raised when the banking aggregator answers with a non-success status."""

    def __init__(self, operation: str, status_code: int, detail: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Aggregator {operation} failed: {status_code} - {detail}")
