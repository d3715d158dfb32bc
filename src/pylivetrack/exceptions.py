"""Custom exception hierarchy for pylivetrack."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Classification of failures reported by the tracking core."""

    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    PROVIDER_FAILURE = "provider_failure"
    PUBLISH_FAILURE = "publish_failure"


class LiveTrackError(Exception):
    """Base exception for all pylivetrack errors."""

    kind: ErrorKind | None = None


class LiveTrackConfigError(LiveTrackError):
    """Invalid or missing configuration."""


class LocationError(LiveTrackError):
    """Failure reported by a location provider."""

    def __init__(self, message: str, *, provider: str = "") -> None:
        self.provider = provider
        super().__init__(message)


class UnsupportedError(LocationError):
    """No location provider is available on this device.

    Fatal for the session; retrying will not help.
    """

    kind = ErrorKind.UNSUPPORTED


class PermissionDeniedError(LocationError):
    """Access to the location provider was refused.

    The operator has to re-grant access before a retry can succeed.
    """

    kind = ErrorKind.PERMISSION_DENIED


class LocationTimeoutError(LocationError):
    """No fix arrived within the one-shot timeout."""

    kind = ErrorKind.TIMEOUT


class ProviderFailureError(LocationError):
    """Transient provider failure while watching.

    The watch stays registered; the provider may recover.
    """

    kind = ErrorKind.PROVIDER_FAILURE


class StoreError(LiveTrackError):
    """Shared store rejected an operation."""

    def __init__(self, message: str, *, collection: str = "", key: str = "") -> None:
        self.collection = collection
        self.key = key
        super().__init__(message)


class StoreUnavailableError(StoreError):
    """Shared store is unreachable."""


class PublishError(LiveTrackError):
    """A live location or driver status write failed."""

    kind = ErrorKind.PUBLISH_FAILURE

    def __init__(self, message: str, *, collection: str = "", key: str = "") -> None:
        self.collection = collection
        self.key = key
        super().__init__(message)


class SamplerBusyError(LiveTrackError):
    """A Sampler already owns an active watch."""


class InvalidTransitionError(LiveTrackError):
    """Operation is not valid in the tracking session's current state."""

    def __init__(self, message: str, *, state: str = "", operation: str = "") -> None:
        self.state = state
        self.operation = operation
        super().__init__(message)
