"""OAuth2 authorization-code login for Tusk.

Provides the ephemeral callback listener, browser launcher and the
flow orchestrator that ties them to the REST client and local store.
"""

from __future__ import annotations

from .browser import open_browser
from .callback_server import CallbackResult, OAuthCallbackServer
from .flow import AuthFlowManager, AuthFlowResult, AuthFlowState, normalize_domain
from .ports import MAX_PORT, MIN_PORT, allocate_port


__all__ = [
    "MAX_PORT",
    "MIN_PORT",
    "AuthFlowManager",
    "AuthFlowResult",
    "AuthFlowState",
    "CallbackResult",
    "OAuthCallbackServer",
    "allocate_port",
    "normalize_domain",
    "open_browser",
]
