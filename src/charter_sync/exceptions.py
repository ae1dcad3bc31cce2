# SPDX-License-Identifier: MIT
"""Standard exceptions raised while dispatching sync operations."""


class SyncError(Exception):
    """Base class for all sync-related exceptions."""

    def __init__(self, message: str, source_name: str | None = None) -> None:
        self.source_name = source_name
        super().__init__(message)


class ValidationFailedError(SyncError):
    """Raised when a payload is still invalid after the repair step."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        source_name: str | None = None,
    ) -> None:
        self.errors = list(errors or [])
        msg = f"{message}: {', '.join(self.errors)}" if self.errors else message
        super().__init__(msg, source_name)


class RepairExhaustedError(SyncError):
    """Raised when the repair ceiling for an entity has been reached."""

    def __init__(self, entity_key: str, attempts: int) -> None:
        self.entity_key = entity_key
        self.attempts = attempts
        super().__init__(
            f"Repair attempts exhausted for {entity_key} after {attempts} attempts"
        )


class UnknownResourceError(SyncError):
    """Raised when an operation names a resource no writer handles."""

    pass


class TransportError(SyncError):
    """Raised when a backend is unreachable or returns a non-success response."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        source_name: str | None = None,
    ) -> None:
        self.status = status
        super().__init__(message, source_name)


class TransportTimeoutError(TransportError):
    """Raised when a backend request times out."""

    pass


class TransportConnectionError(TransportError):
    """Raised when a backend connection fails."""

    pass


class RecordNotFoundError(TransportError):
    """Raised when a record addressed by id does not exist."""

    pass


class AuthenticationError(TransportError):
    """Raised when backend credentials are rejected."""

    pass


class RateLimitError(TransportError):
    """Raised when a backend rate limit is hit."""

    def __init__(
        self,
        message: str = "API rate limit exceeded",
        retry_after: int | None = None,
        source_name: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        msg = f"{message}. Retry after {retry_after}s" if retry_after else message
        super().__init__(msg, status=429, source_name=source_name)


class MirrorError(SyncError):
    """Raised by mirror clients; never escalated past the writer."""

    pass
