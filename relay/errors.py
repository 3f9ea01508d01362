"""Exception hierarchy shared by the transport, auth and dispatch layers.

Three families, mirroring the three boundaries of the client core:

* :class:`TransportError` – what a single HTTP exchange can fail with.
* :class:`AuthError` – outcomes of a coordinated token refresh.
* :class:`DispatchError` – the caller-visible vocabulary of
  :meth:`relay.services.dispatcher.RequestDispatcher.execute`.
"""

from __future__ import annotations

import json
from typing import Any
from typing import Optional


class ConfigError(ValueError):
    """Raised when settings cannot be parsed or validated."""


# ---------------------------------------------------------------------------
# Transport failures
# ---------------------------------------------------------------------------


class TransportError(Exception):
    """Base class for failures of a single transport call."""


class TransportNetworkError(TransportError):
    """The request never produced an HTTP response."""


class TransportTimeout(TransportNetworkError):
    """The request exceeded its timeout."""


class TransportConnectionError(TransportNetworkError):
    """DNS failure, refused connection, dropped socket and friends."""


class HttpStatusError(TransportError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {self.message}")

    @property
    def message(self) -> str:
        """Return the server's error message verbatim where one is available."""

        body = self.body
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                return body
        if isinstance(body, dict):
            for key in ("message", "error", "detail"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
                if isinstance(value, dict) and isinstance(value.get("message"), str):
                    return value["message"]
            return json.dumps(body, default=str)
        if body is None:
            return ""
        return str(body)

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code == 401


# ---------------------------------------------------------------------------
# Authentication outcomes
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for refresh-coordination failures."""


class NoRefreshTokenError(AuthError):
    """No refresh token is stored; the user must log in again."""


class SessionExpiredError(AuthError):
    """The refresh token was rejected; credentials have been cleared."""


class RefreshUnavailableError(AuthError):
    """The refresh endpoint could not be reached (network-level failure)."""

    def __init__(self, message: str, cause: Optional[TransportNetworkError] = None):
        super().__init__(message)
        self.cause = cause


# ---------------------------------------------------------------------------
# Dispatch outcomes
# ---------------------------------------------------------------------------


class DispatchError(Exception):
    """Base class for everything :meth:`execute` can raise."""

    #: ``False`` for outcomes the UI presents as normal (``QueuedForLater``).
    is_error = True


class QueuedForLater(DispatchError):
    """The operation was persisted and will be delivered when possible.

    This is an expected outcome, not a failure: the UI shows the message
    optimistically as sent.
    """

    is_error = False

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} queued for later delivery")


class OfflineError(DispatchError):
    """Device is offline and the operation is not queueable."""

    def __init__(self, message: str = "No network connection"):
        super().__init__(message)


class SessionExpired(DispatchError):
    """Credentials were rejected and cleared; the user must re-authenticate."""

    def __init__(self, message: str = "Session expired. Please log in again."):
        super().__init__(message)


class NetworkError(DispatchError):
    """A non-queueable operation failed at the network level."""

    def __init__(self, message: str, cause: Optional[TransportNetworkError] = None):
        super().__init__(message)
        self.cause = cause


class ServerError(DispatchError):
    """The server rejected the request with a non-auth HTTP failure."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Server error {status_code}: {message}")


__all__ = [
    "AuthError",
    "ConfigError",
    "DispatchError",
    "HttpStatusError",
    "NetworkError",
    "NoRefreshTokenError",
    "OfflineError",
    "QueuedForLater",
    "RefreshUnavailableError",
    "ServerError",
    "SessionExpired",
    "SessionExpiredError",
    "TransportConnectionError",
    "TransportError",
    "TransportNetworkError",
    "TransportTimeout",
]
