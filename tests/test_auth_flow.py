"""Integration tests for the authorization flow manager."""

from __future__ import annotations

import sys

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.constants import TEST_GRACE_PERIOD
from tests.helpers import send_later
from tusk.api.client import AppCredentials
from tusk.auth.callback_server import OAuthCallbackServer
from tusk.auth.flow import (
    AuthFlowManager,
    AuthFlowState,
    describe_step,
    format_duration,
    normalize_domain,
)
from tusk.config import TuskSettings
from tusk.exceptions import (
    AppRegistrationError,
    AuthenticationError,
    AuthFlowTimeout,
    BrowserLaunchError,
    ListenerBindError,
    MissingCodeError,
    TokenExchangeError,
)
from tusk.store import MemoryConfigStore


AUTHORIZE_URL = "https://mastodon.example/oauth/authorize?client_id=cid"


# ── Helpers ──────────────────────────────────────────────────────────


def _make_client(token: str = "tok_123") -> MagicMock:
    """Create a mock MastodonClient."""
    client = MagicMock()
    client.register_app = AsyncMock(return_value=AppCredentials("cid", "csecret"))
    client.get_authorization_url.return_value = AUTHORIZE_URL
    client.get_access_token = AsyncMock(return_value=token)
    return client


def _settings(timeout: float = 5.0) -> TuskSettings:
    return TuskSettings(
        oauth={"auth_timeout_seconds": timeout, "shutdown_grace_seconds": TEST_GRACE_PERIOD}
    )


class _Harness:
    """Wires a flow to a mock client, a memory store and a fake browser."""

    def __init__(
        self,
        query: str | None = "code=abc",
        client: MagicMock | None = None,
        store: MemoryConfigStore | None = None,
        timeout: float = 5.0,
        answers: list[str] | None = None,
        server_factory: Any = None,
    ) -> None:
        self.query = query
        self.client = client or _make_client()
        self.store = store or MemoryConfigStore()
        self.servers: list[OAuthCallbackServer] = []
        self.browsed: list[str] = []
        self.lines: list[str] = []
        self.answers = list(answers or [])
        self.domains: list[str] = []
        self.flow = AuthFlowManager(
            self.store,
            settings=_settings(timeout),
            client_factory=self._client_factory,
            server_factory=server_factory or self._server_factory,
            prompt=self._prompt,
            output=self.lines.append,
            browser=self._browser,
        )

    def _client_factory(self, base_url: str) -> MagicMock:
        self.domains.append(base_url)
        return self.client

    def _server_factory(self) -> OAuthCallbackServer:
        server = OAuthCallbackServer(grace_period=TEST_GRACE_PERIOD)
        self.servers.append(server)
        return server

    def _prompt(self, text: str) -> str:
        self.lines.append(text)
        return self.answers.pop(0)

    def _browser(self, url: str) -> None:
        self.browsed.append(url)
        if self.query is not None:
            send_later(f"{self.servers[0].redirect_uri}?{self.query}")


# ── Tests ────────────────────────────────────────────────────────────


class TestNormalizeDomain:
    """Tests for domain normalization."""

    def test_adds_https(self) -> None:
        """Bare domains get https://."""
        assert normalize_domain("mastodon.social") == "https://mastodon.social"

    def test_keeps_explicit_scheme(self) -> None:
        """http:// and https:// are preserved."""
        assert normalize_domain("http://localhost:3000") == "http://localhost:3000"
        assert normalize_domain("https://example.org") == "https://example.org"

    def test_strips_whitespace_and_slash(self) -> None:
        """Surrounding whitespace and trailing slashes are dropped."""
        assert normalize_domain("  mastodon.social/ \n") == "https://mastodon.social"

    def test_empty_is_error(self) -> None:
        """An empty domain fails."""
        with pytest.raises(AuthenticationError, match="domain cannot be empty"):
            normalize_domain("   ")


class TestHelpers:
    """Tests for message helpers."""

    def test_format_duration(self) -> None:
        """Whole minutes read as minutes, everything else as seconds."""
        assert format_duration(300) == "5 minutes"
        assert format_duration(60) == "1 minute"
        assert format_duration(90) == "90 seconds"
        assert format_duration(0.5) == "0.5 seconds"

    def test_describe_step(self) -> None:
        """Each failing state names its step."""
        assert describe_step(AuthFlowState.DOMAIN_COLLECTED) == "registering the application"
        assert describe_step(AuthFlowState.AWAITING_CALLBACK) == "waiting for authorization"
        assert describe_step(None) == "authenticating"


class TestAuthFlowSuccess:
    """Tests for a complete flow."""

    def test_initial_state(self) -> None:
        """Flow starts IDLE."""
        h = _Harness()
        assert h.flow.flow_state == AuthFlowState.IDLE
        assert h.flow.failed_state is None

    def test_full_flow(self) -> None:
        """Code arrives, is exchanged, and everything is persisted."""
        h = _Harness()

        result = h.flow.run(domain="mastodon.example")

        assert result.success
        assert result.state == AuthFlowState.PERSISTED
        assert result.domain == "https://mastodon.example"
        assert result.access_token == "tok_123"
        assert h.flow.flow_state == AuthFlowState.PERSISTED
        assert h.store.snapshot() == {
            "domain": "https://mastodon.example",
            "client_id": "cid",
            "client_secret": "csecret",
            "access_token": "tok_123",
        }

    def test_collaborator_calls(self) -> None:
        """Registration, URL building and exchange use the listener's redirect URI."""
        h = _Harness()

        h.flow.run(domain="mastodon.example")

        redirect_uri = h.servers[0].redirect_uri
        assert h.domains == ["https://mastodon.example"]
        h.client.register_app.assert_awaited_once_with(
            "Tusk CLI", redirect_uri, "read write follow"
        )
        h.client.get_authorization_url.assert_called_once_with(
            "cid", redirect_uri, "read write follow"
        )
        h.client.get_access_token.assert_awaited_once_with("cid", "csecret", redirect_uri, "abc")

    def test_url_shown_and_browser_opened(self) -> None:
        """The authorization URL is printed and handed to the browser."""
        h = _Harness()

        h.flow.run(domain="mastodon.example")

        assert AUTHORIZE_URL in h.lines
        assert h.browsed == [AUTHORIZE_URL]

    def test_listener_closed_after_success(self) -> None:
        """The callback server does not outlive the flow."""
        h = _Harness()

        h.flow.run(domain="mastodon.example")

        assert not h.servers[0].is_running
        assert h.flow._callback_server is None

    def test_domain_prompted_when_missing(self) -> None:
        """Without a domain argument the user is asked for one."""
        h = _Harness(answers=["mastodon.example"])

        result = h.flow.run()

        assert result.success
        assert any("instance domain" in line for line in h.lines)

    def test_browser_failure_is_not_fatal(self) -> None:
        """A browser that cannot be opened only produces a message."""
        h = _Harness()

        def broken_browser(url: str) -> None:
            send_later(f"{h.servers[0].redirect_uri}?code=abc")
            raise BrowserLaunchError("unsupported platform: plan9")

        h.flow._browser = broken_browser

        result = h.flow.run(domain="mastodon.example")

        assert result.success
        assert any("Failed to open browser automatically" in line for line in h.lines)

    def test_no_browser(self) -> None:
        """launch_browser=False only prints the URL."""
        h = _Harness(query=None)

        def output(line: str) -> None:
            h.lines.append(line)
            if line == AUTHORIZE_URL:
                send_later(f"{h.servers[0].redirect_uri}?code=abc")

        h.flow._output = output

        result = h.flow.run(domain="mastodon.example", launch_browser=False)

        assert result.success
        assert h.browsed == []


class TestAuthFlowFailures:
    """Tests for each failure path."""

    def test_empty_domain(self) -> None:
        """An empty domain fails before any network call."""
        h = _Harness(answers=["  "])

        with pytest.raises(AuthenticationError, match="domain cannot be empty"):
            h.flow.run()

        assert h.flow.flow_state == AuthFlowState.FAILED
        assert h.flow.failed_state == AuthFlowState.IDLE
        assert h.domains == []

    def test_registration_failure(self) -> None:
        """A rejected registration stores nothing and never binds."""
        client = _make_client()
        client.register_app = AsyncMock(side_effect=AppRegistrationError("nope", status_code=422))
        h = _Harness(client=client)

        with pytest.raises(AppRegistrationError):
            h.flow.run(domain="mastodon.example")

        assert h.flow.failed_state == AuthFlowState.DOMAIN_COLLECTED
        assert h.store.snapshot() == {}
        assert not h.servers[0].is_running
        assert h.browsed == []

    @pytest.mark.skipif(sys.platform == "win32", reason="SO_REUSEADDR semantics differ")
    def test_bind_failure_keeps_credentials(self, occupied_port: int) -> None:
        """Credentials saved at registration survive a listener failure."""
        h = _Harness(server_factory=lambda: OAuthCallbackServer(port=occupied_port))

        with pytest.raises(ListenerBindError):
            h.flow.run(domain="mastodon.example")

        assert h.flow.failed_state == AuthFlowState.APP_REGISTERED
        assert h.store.get("client_id") == "cid"
        assert h.store.get("access_token") is None
        assert h.browsed == []

    def test_timeout(self) -> None:
        """No redirect within the limit fails the flow with a timeout."""
        h = _Harness(query=None, timeout=0.2)

        with pytest.raises(AuthFlowTimeout) as exc_info:
            h.flow.run(domain="mastodon.example")

        assert exc_info.value.timeout == 0.2
        assert h.flow.failed_state == AuthFlowState.AWAITING_CALLBACK
        assert h.store.get("client_secret") == "csecret"
        assert h.store.get("access_token") is None
        assert not h.servers[0].is_running
        h.client.get_access_token.assert_not_awaited()

    def test_missing_code(self) -> None:
        """A redirect without a code fails the flow."""
        h = _Harness(query="state=x")

        with pytest.raises(MissingCodeError):
            h.flow.run(domain="mastodon.example")

        assert h.flow.flow_state == AuthFlowState.FAILED
        assert h.flow.failed_state == AuthFlowState.AWAITING_CALLBACK

    def test_token_exchange_failure(self) -> None:
        """A rejected code leaves no access token behind."""
        client = _make_client()
        client.get_access_token = AsyncMock(side_effect=TokenExchangeError("invalid_grant"))
        h = _Harness(client=client)

        with pytest.raises(TokenExchangeError):
            h.flow.run(domain="mastodon.example")

        assert h.flow.failed_state == AuthFlowState.CODE_RECEIVED
        assert h.store.get("access_token") is None

    def test_unexpected_error_is_wrapped(self) -> None:
        """Non-Tusk errors become AuthenticationError with the failing step."""
        h = _Harness()

        def eof(_text: str) -> str:
            raise EOFError

        h.flow._prompt = eof

        with pytest.raises(AuthenticationError, match="Authentication flow failed") as exc_info:
            h.flow.run()

        assert exc_info.value.step == "idle"


class TestReauthentication:
    """Tests for the confirmation before replacing a token."""

    def test_declined(self) -> None:
        """Answering no leaves everything untouched."""
        store = MemoryConfigStore({"access_token": "old"})
        h = _Harness(store=store, answers=["n"])

        result = h.flow.run(domain="mastodon.example")

        assert not result.success
        assert result.state == AuthFlowState.CANCELLED
        assert store.get("access_token") == "old"
        assert h.domains == []
        assert "Authentication cancelled." in h.lines

    def test_accepted(self) -> None:
        """Answering yes restarts the whole flow."""
        store = MemoryConfigStore({"access_token": "old"})
        h = _Harness(store=store, answers=["YES"])

        result = h.flow.run(domain="mastodon.example")

        assert result.success
        assert store.get("access_token") == "tok_123"
        h.client.register_app.assert_awaited_once()

    def test_no_prompt_without_token(self) -> None:
        """Without stored credentials the flow does not ask."""
        h = _Harness()

        assert h.flow.confirm_reauthentication() is True
        assert h.lines == []
