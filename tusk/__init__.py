"""Tusk - a command-line client for Mastodon."""

from __future__ import annotations

from .exceptions import (
    AuthenticationError,
    AuthFlowTimeout,
    BrowserLaunchError,
    TuskException,
)


__version__ = "0.1.0"

__all__ = [
    "AuthFlowTimeout",
    "AuthenticationError",
    "BrowserLaunchError",
    "TuskException",
    "__version__",
]
