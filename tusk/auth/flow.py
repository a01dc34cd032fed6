"""OAuth2 authorization-code flow orchestrator.

AuthFlowManager walks a linear state machine: collect the instance
domain, register the client, start the callback listener, send the
user to the consent page, wait for the redirect, exchange the code,
and persist the token. Credentials from registration are saved as
soon as they exist so a failed browser step can be retried without
registering again.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..api.client import MastodonClient
from ..config import TuskSettings, get_settings
from ..exceptions import AuthenticationError, BrowserLaunchError, TuskException
from ..store import ACCESS_TOKEN_KEY, CLIENT_ID_KEY, CLIENT_SECRET_KEY, DOMAIN_KEY
from ..utils.async_helpers import run_async
from .browser import open_browser
from .callback_server import OAuthCallbackServer


if TYPE_CHECKING:
    from ..store import ConfigStore


logger = logging.getLogger("tusk.auth")


class AuthFlowState(str, Enum):
    """State of an authorization flow."""

    IDLE = "idle"
    DOMAIN_COLLECTED = "domain_collected"
    APP_REGISTERED = "app_registered"
    LISTENER_STARTED = "listener_started"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    PERSISTED = "persisted"
    FAILED = "failed"
    CANCELLED = "cancelled"


# What the flow is doing while it sits in each state.
_STEP_DESCRIPTIONS: dict[AuthFlowState, str] = {
    AuthFlowState.IDLE: "reading the instance domain",
    AuthFlowState.DOMAIN_COLLECTED: "registering the application",
    AuthFlowState.APP_REGISTERED: "starting the callback listener",
    AuthFlowState.LISTENER_STARTED: "opening the authorization page",
    AuthFlowState.AWAITING_CALLBACK: "waiting for authorization",
    AuthFlowState.CODE_RECEIVED: "exchanging the code for an access token",
    AuthFlowState.TOKEN_EXCHANGED: "saving the access token",
}


def describe_step(state: AuthFlowState | None) -> str:
    """Human-readable name of the work done in ``state``."""
    if state is None:
        return "authenticating"
    return _STEP_DESCRIPTIONS.get(state, state.value.replace("_", " "))


def normalize_domain(domain: str) -> str:
    """Turn user input into a base URL.

    ``mastodon.social`` becomes ``https://mastodon.social``; an explicit
    ``http://`` or ``https://`` scheme is kept. Trailing slashes are dropped.

    Raises
    ------
    AuthenticationError
        If the domain is empty.
    """
    domain = domain.strip()
    if not domain:
        raise AuthenticationError("domain cannot be empty", step="collect_domain")
    if not domain.startswith(("http://", "https://")):
        domain = "https://" + domain
    return domain.rstrip("/")


def format_duration(seconds: float) -> str:
    """Render a wait limit for messages, e.g. ``5 minutes`` or ``90 seconds``."""
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"


@dataclass
class AuthFlowResult:
    """Outcome of a completed or cancelled flow."""

    success: bool
    state: AuthFlowState
    domain: str | None = None
    access_token: str | None = None
    error: str | None = None


class AuthFlowManager:
    """Orchestrates the authorization-code flow against one instance.

    Parameters
    ----------
    store : ConfigStore
        Where domain, client credentials and the access token are saved.
    settings : TuskSettings, optional
        Flow settings (defaults to ``get_settings()``).
    client_factory : callable, optional
        ``client_factory(base_url) -> MastodonClient``.
    server_factory : callable, optional
        ``server_factory() -> OAuthCallbackServer``.
    prompt : callable
        Reads a line of user input, given the prompt text.
    output : callable
        Shows a line of text to the user.
    browser : callable
        Opens a URL; may raise ``BrowserLaunchError``.
    """

    def __init__(
        self,
        store: ConfigStore,
        settings: TuskSettings | None = None,
        client_factory: Callable[[str], MastodonClient] | None = None,
        server_factory: Callable[[], OAuthCallbackServer] | None = None,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
        browser: Callable[[str], None] = open_browser,
    ) -> None:
        """Initialize the auth flow manager."""
        self.store = store
        self.settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client
        self._server_factory = server_factory or self._default_server
        self._prompt = prompt
        self._output = output
        self._browser = browser

        self._flow_state = AuthFlowState.IDLE
        self._failed_state: AuthFlowState | None = None
        self._callback_server: OAuthCallbackServer | None = None

    @property
    def flow_state(self) -> AuthFlowState:
        """Current state of the flow."""
        return self._flow_state

    @property
    def failed_state(self) -> AuthFlowState | None:
        """The state the flow was in when it failed, if it did."""
        return self._failed_state

    def _default_client(self, base_url: str) -> MastodonClient:
        return MastodonClient(
            base_url,
            timeout=self.settings.http.timeout,
            user_agent=self.settings.http.user_agent,
        )

    def _default_server(self) -> OAuthCallbackServer:
        oauth = self.settings.oauth
        return OAuthCallbackServer(
            host=oauth.callback_host,
            grace_period=oauth.shutdown_grace_seconds,
        )

    def _transition(self, state: AuthFlowState) -> None:
        logger.debug("Auth flow: %s -> %s", self._flow_state.value, state.value)
        self._flow_state = state

    def confirm_reauthentication(self) -> bool:
        """Ask before replacing an existing token. True when the flow may proceed."""
        if not self.store.get(ACCESS_TOKEN_KEY):
            return True
        self._output("You are already authenticated.")
        try:
            answer = self._prompt("Do you want to re-authenticate? (y/N): ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    def run(self, domain: str | None = None, launch_browser: bool = True) -> AuthFlowResult:
        """Run the whole flow, blocking until it completes or fails.

        Parameters
        ----------
        domain : str, optional
            Instance domain; prompted for when omitted.
        launch_browser : bool
            Try to open the system browser (also gated by settings).

        Returns
        -------
        AuthFlowResult
            Success, or a cancelled result when re-authentication was declined.

        Raises
        ------
        AuthenticationError
            For any failing step. ``failed_state`` names the step.
        StoreError
            If credentials cannot be saved.
        """
        self._flow_state = AuthFlowState.IDLE
        self._failed_state = None

        if not self.confirm_reauthentication():
            self._transition(AuthFlowState.CANCELLED)
            self._output("Authentication cancelled.")
            return AuthFlowResult(
                success=False, state=self._flow_state, error="authentication cancelled"
            )

        oauth = self.settings.oauth

        try:
            if domain is None:
                domain = self._prompt(
                    "Enter your Mastodon instance domain (e.g., mastodon.social): "
                )
            base_url = normalize_domain(domain)
            self._transition(AuthFlowState.DOMAIN_COLLECTED)

            self._output("Starting OAuth flow...")
            self._callback_server = self._server_factory()
            redirect_uri = self._callback_server.redirect_uri
            client = self._client_factory(base_url)

            self._output("Registering application...")
            app = run_async(client.register_app(oauth.app_name, redirect_uri, oauth.scopes))
            self.store.set(DOMAIN_KEY, base_url)
            self.store.set(CLIENT_ID_KEY, app.client_id)
            self.store.set(CLIENT_SECRET_KEY, app.client_secret)
            self._transition(AuthFlowState.APP_REGISTERED)

            self._callback_server.start()
            self._transition(AuthFlowState.LISTENER_STARTED)

            authorize_url = client.get_authorization_url(app.client_id, redirect_uri, oauth.scopes)
            self._output("Opening browser for authorization...")
            self._output("If the browser doesn't open automatically, visit this URL:")
            self._output(authorize_url)
            if launch_browser and oauth.open_browser:
                self._launch_browser(authorize_url)

            self._transition(AuthFlowState.AWAITING_CALLBACK)
            timeout = oauth.auth_timeout_seconds
            self._output(f"Waiting for authorization (timeout: {format_duration(timeout)})...")
            code = self._callback_server.wait_for_code(timeout)
            self._transition(AuthFlowState.CODE_RECEIVED)

            self._output("Exchanging code for access token...")
            token = run_async(
                client.get_access_token(app.client_id, app.client_secret, redirect_uri, code)
            )
            self._transition(AuthFlowState.TOKEN_EXCHANGED)

            self.store.set(ACCESS_TOKEN_KEY, token)
            self._transition(AuthFlowState.PERSISTED)
            logger.info("Authenticated with %s", base_url)

            return AuthFlowResult(
                success=True,
                state=self._flow_state,
                domain=base_url,
                access_token=token,
            )

        except TuskException:
            self._fail()
            raise
        except Exception as exc:
            self._fail()
            msg = f"Authentication flow failed: {exc}"
            raise AuthenticationError(msg, step=self._failed_state.value) from exc
        finally:
            if self._callback_server is not None:
                self._callback_server.shutdown()
                self._callback_server = None

    def _fail(self) -> None:
        self._failed_state = self._flow_state
        self._transition(AuthFlowState.FAILED)
        logger.debug("Auth flow failed while %s", describe_step(self._failed_state))

    def _launch_browser(self, url: str) -> None:
        try:
            self._browser(url)
        except BrowserLaunchError as exc:
            logger.warning("Failed to open browser automatically: %s", exc)
            self._output(f"Failed to open browser automatically: {exc}")
