"""Failure taxonomy shared by every network- and player-facing operation.

Raw exceptions enter the core at a single boundary (the retry executor and the
operations built on it) and are converted by `classify` into a
`ClassifiedError`. Each reason carries a fixed retryability flag, a suggested
backoff delay, and the (title, message, recovery suggestion) triple rendered
verbatim by the presentation layer.
"""

from __future__ import annotations

import asyncio
import errno
import json
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Union


class ErrorKind(str, Enum):
    """Top-level failure families."""

    NETWORK = "Network"
    AUTHORIZATION = "Authorization"
    RESOURCE = "Resource"
    OPERATION = "Operation"
    SYSTEM = "System"
    UNKNOWN = "Unknown"


class NetworkReason(str, Enum):
    NO_CONNECTION = "no_connection"
    TIMEOUT = "timeout"
    SERVER_UNAVAILABLE = "server_unavailable"
    RATE_LIMITED = "rate_limited"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"
    DECODING_FAILED = "decoding_failed"


class AuthorizationReason(str, Enum):
    NOT_AUTHORIZED = "not_authorized"
    RESTRICTED = "restricted"
    DENIED = "denied"
    NO_SUBSCRIPTION = "no_subscription"


class ResourceReason(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    UNAVAILABLE = "unavailable"


class OperationReason(str, Enum):
    CANCELLED = "cancelled"
    FAILED = "failed"
    TIMEOUT = "timeout"
    INVALID_STATE = "invalid_state"


class SystemReason(str, Enum):
    PLAYER_NOT_RUNNING = "player_not_running"
    PLAYER_NOT_RESPONDING = "player_not_responding"
    SCRIPT_ERROR = "script_error"
    PERMISSION_DENIED = "permission_denied"


class UnknownReason(str, Enum):
    UNKNOWN = "unknown"


Reason = Union[
    NetworkReason,
    AuthorizationReason,
    ResourceReason,
    OperationReason,
    SystemReason,
    UnknownReason,
]

_KIND_BY_REASON_TYPE: dict[type, ErrorKind] = {
    NetworkReason: ErrorKind.NETWORK,
    AuthorizationReason: ErrorKind.AUTHORIZATION,
    ResourceReason: ErrorKind.RESOURCE,
    OperationReason: ErrorKind.OPERATION,
    SystemReason: ErrorKind.SYSTEM,
    UnknownReason: ErrorKind.UNKNOWN,
}

DEFAULT_RETRY_DELAY_S = 0.5


@dataclass(frozen=True)
class _Presentation:
    title: str
    message: str
    recovery_suggestion: str | None
    retryable: bool = False
    retry_delay: float = DEFAULT_RETRY_DELAY_S


# Messages containing `{detail}` are interpolated with the reason detail.
_PRESENTATION: dict[Reason, _Presentation] = {
    NetworkReason.NO_CONNECTION: _Presentation(
        "No Internet Connection",
        "Unable to connect to the internet. Please check your connection and try again.",
        "Check your internet connection and try again",
        retryable=True,
        retry_delay=2.0,
    ),
    NetworkReason.TIMEOUT: _Presentation(
        "Request Timed Out",
        "The request took too long to complete. Please try again.",
        "Try again in a few moments",
        retryable=True,
        retry_delay=1.0,
    ),
    NetworkReason.SERVER_UNAVAILABLE: _Presentation(
        "Service Unavailable",
        "The Apple Music service is temporarily unavailable. Please try again later.",
        "Try again in a few moments",
        retryable=True,
        retry_delay=2.0,
    ),
    NetworkReason.RATE_LIMITED: _Presentation(
        "Too Many Requests",
        "You've made too many requests. Please wait a moment and try again.",
        "Wait a minute before trying again",
        retryable=True,
        retry_delay=10.0,
    ),
    NetworkReason.REQUEST_FAILED: _Presentation(
        "Network Error",
        "Network request failed: {detail}",
        "If the problem persists, please restart the app",
    ),
    NetworkReason.INVALID_RESPONSE: _Presentation(
        "Invalid Response",
        "Received an unexpected response from the server.",
        "If the problem persists, please restart the app",
    ),
    NetworkReason.DECODING_FAILED: _Presentation(
        "Data Error",
        "Failed to process server response: {detail}",
        "If the problem persists, please restart the app",
    ),
    AuthorizationReason.NOT_AUTHORIZED: _Presentation(
        "Authorization Required",
        "StarTune needs permission to access Apple Music. Please grant authorization in the prompt.",
        "Click 'Request Authorization' to grant permission",
    ),
    AuthorizationReason.RESTRICTED: _Presentation(
        "Access Restricted",
        "Access to Apple Music is restricted on this device.",
        "Check Screen Time or parental control settings",
    ),
    AuthorizationReason.DENIED: _Presentation(
        "Permission Denied",
        "You've denied permission to access Apple Music. StarTune needs this permission to add songs to your favorites.",
        "Go to System Settings → Privacy → Media & Apple Music to grant permission",
    ),
    AuthorizationReason.NO_SUBSCRIPTION: _Presentation(
        "Subscription Required",
        "An active Apple Music subscription is required to add songs to your favorites.",
        "Subscribe to Apple Music to use this feature",
    ),
    ResourceReason.NOT_FOUND: _Presentation(
        "Not Found",
        "The {detail} could not be found in the Apple Music catalog.",
        "Try playing a different song",
    ),
    ResourceReason.ALREADY_EXISTS: _Presentation(
        "Already Exists",
        "This item already exists.",
        None,
    ),
    ResourceReason.UNAVAILABLE: _Presentation(
        "Unavailable",
        "This resource is currently unavailable.",
        "Try again later",
    ),
    OperationReason.CANCELLED: _Presentation(
        "Cancelled",
        "The operation was cancelled.",
        None,
    ),
    OperationReason.FAILED: _Presentation(
        "Operation Failed",
        "The operation failed: {detail}",
        "Try again",
    ),
    OperationReason.TIMEOUT: _Presentation(
        "Timeout",
        "The operation took too long to complete.",
        "Try again",
        retryable=True,
        retry_delay=1.0,
    ),
    OperationReason.INVALID_STATE: _Presentation(
        "Invalid State",
        "Cannot perform this operation: {detail}",
        "Please check the current state and try again",
    ),
    SystemReason.PLAYER_NOT_RUNNING: _Presentation(
        "Music App Not Running",
        "The Music app is not running. Please open the Music app to use StarTune.",
        "Launch the Music app and try again",
    ),
    SystemReason.PLAYER_NOT_RESPONDING: _Presentation(
        "Music App Not Responding",
        "The Music app is not responding. Please wait a moment or restart the Music app.",
        "Restart the Music app",
        retryable=True,
        retry_delay=2.0,
    ),
    SystemReason.SCRIPT_ERROR: _Presentation(
        "Script Error",
        "Failed to communicate with Music app: {detail}",
        "Grant StarTune permission to control Music in System Settings",
    ),
    SystemReason.PERMISSION_DENIED: _Presentation(
        "Permission Denied",
        "Permission denied: {detail}",
        "Check System Settings → Privacy & Security → Automation",
    ),
    UnknownReason.UNKNOWN: _Presentation(
        "Unexpected Error",
        "An unexpected error occurred: {detail}",
        "Please try restarting the app",
    ),
}


class ClassifiedError(Exception):
    """A failure mapped onto the taxonomy, ready for display and analytics."""

    def __init__(
        self,
        reason: Reason,
        detail: str | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.reason = reason
        self.kind = _KIND_BY_REASON_TYPE[type(reason)]
        self.detail = detail
        self.cause = cause
        super().__init__(self.message)

    @property
    def _presentation(self) -> _Presentation:
        return _PRESENTATION[self.reason]

    @property
    def title(self) -> str:
        return self._presentation.title

    @property
    def message(self) -> str:
        template = self._presentation.message
        if "{detail}" not in template:
            return template
        return template.format(detail=self.detail or "unknown")

    @property
    def recovery_suggestion(self) -> str | None:
        return self._presentation.recovery_suggestion

    @property
    def is_retryable(self) -> bool:
        return self._presentation.retryable

    @property
    def retry_delay(self) -> float:
        return self._presentation.retry_delay

    @property
    def error_type(self) -> str:
        """Privacy-preserving label such as ``Network.timeout``."""
        if self.kind is ErrorKind.UNKNOWN:
            return ErrorKind.UNKNOWN.value
        return f"{self.kind.value}.{self.reason.value}"

    def __reduce__(self):
        # `args` holds the rendered message, so rebuild from the reason instead.
        return (type(self), (self.reason, self.detail), {"cause": self.cause})

    def __repr__(self) -> str:
        return f"ClassifiedError({self.error_type!r}, detail={self.detail!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClassifiedError):
            return NotImplemented
        return (self.reason, self.detail) == (other.reason, other.detail)

    def __hash__(self) -> int:
        return hash((self.reason, self.detail))


_UNREACHABLE_NETWORK_ERRNOS = {errno.ENETUNREACH, errno.ENETDOWN}
_UNREACHABLE_HOST_ERRNOS = {errno.EHOSTUNREACH, errno.EHOSTDOWN}


def classify(error: BaseException) -> ClassifiedError:
    """Map any raised exception onto the taxonomy. Never raises."""
    if isinstance(error, ClassifiedError):
        return error
    try:
        return _classify(error)
    except Exception:  # pragma: no cover - exotic __str__/attribute failures
        return ClassifiedError(UnknownReason.UNKNOWN, type(error).__name__, cause=error)


def _classify(error: BaseException) -> ClassifiedError:
    if isinstance(error, asyncio.CancelledError):
        return ClassifiedError(OperationReason.CANCELLED, cause=error)
    # asyncio.TimeoutError is an alias of TimeoutError on 3.11+.
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ClassifiedError(NetworkReason.TIMEOUT, cause=error)

    status = _http_status(error)
    if status is not None:
        return _classify_http_status(status, error)

    if isinstance(error, (ConnectionRefusedError, socket.gaierror)):
        return ClassifiedError(NetworkReason.SERVER_UNAVAILABLE, cause=error)
    if isinstance(error, ConnectionError):
        return ClassifiedError(NetworkReason.NO_CONNECTION, cause=error)
    if isinstance(error, PermissionError):
        return ClassifiedError(AuthorizationReason.DENIED, cause=error)
    if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError)):
        return ClassifiedError(
            NetworkReason.DECODING_FAILED, type(error).__name__, cause=error
        )
    if isinstance(error, OSError):
        code = error.errno
        if code in _UNREACHABLE_NETWORK_ERRNOS:
            return ClassifiedError(NetworkReason.NO_CONNECTION, cause=error)
        if code in _UNREACHABLE_HOST_ERRNOS:
            return ClassifiedError(NetworkReason.SERVER_UNAVAILABLE, cause=error)
    return ClassifiedError(UnknownReason.UNKNOWN, _describe(error), cause=error)


def _http_status(error: BaseException) -> int | None:
    """Return an HTTP status exposed by client exceptions, if any."""
    for candidate in (error, getattr(error, "response", None)):
        if candidate is None:
            continue
        for attr in ("status_code", "status"):
            value = getattr(candidate, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                if 100 <= value <= 599:
                    return value
    return None


def _classify_http_status(status: int, error: BaseException) -> ClassifiedError:
    if status == 401:
        return ClassifiedError(AuthorizationReason.NOT_AUTHORIZED, cause=error)
    if status == 403:
        return ClassifiedError(AuthorizationReason.DENIED, cause=error)
    if status == 404:
        return ClassifiedError(ResourceReason.NOT_FOUND, "song", cause=error)
    if status == 409:
        return ClassifiedError(ResourceReason.ALREADY_EXISTS, cause=error)
    if status == 408:
        return ClassifiedError(NetworkReason.TIMEOUT, cause=error)
    if status == 429:
        return ClassifiedError(NetworkReason.RATE_LIMITED, cause=error)
    if status in {502, 503, 504}:
        return ClassifiedError(NetworkReason.SERVER_UNAVAILABLE, cause=error)
    if status >= 500:
        return ClassifiedError(
            NetworkReason.REQUEST_FAILED, f"HTTP {status}", cause=error
        )
    return ClassifiedError(UnknownReason.UNKNOWN, f"HTTP {status}", cause=error)


def _describe(error: BaseException) -> str:
    text = str(error).strip()
    return text or type(error).__name__
