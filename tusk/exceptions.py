"""Tusk exception hierarchy.

All Tusk-specific exceptions inherit from TuskException, enabling
catch-all handling in the CLI while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class TuskException(Exception):
    """Base exception for all Tusk errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize Tusk exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (step, port, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(TuskException):
    """Settings could not be loaded or are invalid."""


class StoreError(TuskException):
    """The local key/value store could not be read or written.

    Raised when the SQLite database cannot be opened, queried,
    or updated.
    """

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize store error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The key being accessed when the failure occurred.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key


class BrowserLaunchError(TuskException):
    """The system browser could not be opened.

    Never fatal: the authorization URL is always printed as well.
    """


class AuthenticationError(TuskException):
    """Base exception for all authentication failures.

    Raised when any step of the OAuth2 authorization-code flow fails.
    """

    def __init__(self, message: str, step: str | None = None, **context: Any) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        step : str, optional
            The flow step that failed (e.g. ``"register_app"``).
        **context : Any
            Additional context.
        """
        super().__init__(message, step=step, **context)
        self.step = step


class PortAllocationError(AuthenticationError):
    """No random source was available to pick a callback port."""


class ListenerBindError(AuthenticationError):
    """The callback listener could not bind its port.

    Raised when the port is already in use or binding is not permitted.
    """

    def __init__(self, message: str, port: int | None = None, **context: Any) -> None:
        """Initialize bind error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        port : int, optional
            The port that could not be bound.
        **context : Any
            Additional context.
        """
        super().__init__(message, port=port, **context)
        self.port = port


class MissingCodeError(AuthenticationError):
    """The browser redirect arrived without an authorization code."""


class AuthFlowTimeout(AuthenticationError):
    """No callback arrived before the wait limit.

    The message is kept free of context so callers can compare it
    verbatim; the limit is available on ``timeout``.
    """

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, **context)
        self.timeout = timeout


class APIError(AuthenticationError):
    """A REST call to the server failed.

    Carries the HTTP status code when the server answered at all.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        step: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the server.
        step : str, optional
            The flow step that issued the request.
        **context : Any
            Additional context.
        """
        super().__init__(message, step=step, status_code=status_code, **context)
        self.status_code = status_code


class AppRegistrationError(APIError):
    """Registering the client application failed."""


class TokenExchangeError(APIError):
    """Exchanging the authorization code for an access token failed."""


class TokenRevocationError(APIError):
    """Revoking the access token on the server failed."""
