"""REST client for the OAuth endpoints of a Mastodon-compatible server."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    APIError,
    AppRegistrationError,
    TokenExchangeError,
    TokenRevocationError,
)
from ..log import redact_sensitive_data


logger = logging.getLogger("tusk.api")


@dataclass(frozen=True)
class AppCredentials:
    """Client credentials issued by application registration.

    Attributes
    ----------
    client_id : str
        The OAuth2 client identifier.
    client_secret : str
        The OAuth2 client secret.
    """

    client_id: str
    client_secret: str


class MastodonClient:
    """Thin async wrapper around the server's fixed OAuth endpoints.

    Parameters
    ----------
    base_url : str
        Instance URL including scheme, e.g. ``https://mastodon.social``.
    access_token : str
        Bearer token for authenticated calls (empty before login).
    timeout : float
        Per-request timeout in seconds.
    user_agent : str
        Value of the ``User-Agent`` header.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        timeout: float = 30.0,
        user_agent: str = "tusk-cli",
    ) -> None:
        """Initialize the client."""
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _post_form(
        self,
        path: str,
        data: dict[str, str],
        error_cls: type[APIError],
        action: str,
    ) -> httpx.Response:
        """POST form data and return the response, raising ``error_cls`` on failure."""
        url = f"{self.base_url}{path}"
        logger.debug("POST %s %s", url, redact_sensitive_data(data))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
                resp = await client.post(url, data=data)
        except httpx.HTTPError as exc:
            msg = f"failed to {action}: {exc}"
            raise error_cls(msg, step=action.replace(" ", "_")) from exc

        if resp.status_code != 200:
            msg = f"failed to {action}: {resp.text} (status {resp.status_code})"
            raise error_cls(msg, status_code=resp.status_code, step=action.replace(" ", "_"))
        return resp

    @staticmethod
    def _json(resp: httpx.Response, error_cls: type[APIError], action: str) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            msg = f"failed to decode {action} response: {exc}"
            raise error_cls(msg, status_code=resp.status_code) from exc
        if not isinstance(body, dict):
            msg = f"unexpected {action} response: {body!r}"
            raise error_cls(msg, status_code=resp.status_code)
        return body

    async def register_app(self, name: str, redirect_uri: str, scopes: str) -> AppCredentials:
        """Register this client with the server.

        Parameters
        ----------
        name : str
            Client name shown to the user on the consent page.
        redirect_uri : str
            Where the server sends the browser after consent.
        scopes : str
            Space-separated scopes.

        Returns
        -------
        AppCredentials
            The issued client id and secret.

        Raises
        ------
        AppRegistrationError
            If the request fails or the response lacks credentials.
        """
        resp = await self._post_form(
            "/api/v1/apps",
            {"client_name": name, "redirect_uris": redirect_uri, "scopes": scopes},
            AppRegistrationError,
            "register app",
        )
        body = self._json(resp, AppRegistrationError, "app")
        client_id = body.get("client_id")
        client_secret = body.get("client_secret")
        if not client_id or not client_secret:
            msg = "failed to register app: response is missing client credentials"
            raise AppRegistrationError(msg, status_code=resp.status_code, step="register_app")
        logger.info("Registered application %r with %s", name, self.base_url)
        return AppCredentials(client_id=str(client_id), client_secret=str(client_secret))

    def get_authorization_url(self, client_id: str, redirect_uri: str, scopes: str) -> str:
        """Build the consent page URL the user visits in the browser."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scopes,
        }
        return f"{self.base_url}/oauth/authorize?{urlencode(params)}"

    async def get_access_token(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code: str,
    ) -> str:
        """Exchange an authorization code for an access token.

        Raises
        ------
        TokenExchangeError
            If the server rejects the code or returns no token.
        """
        resp = await self._post_form(
            "/oauth/token",
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
                "grant_type": "authorization_code",
            },
            TokenExchangeError,
            "get access token",
        )
        body = self._json(resp, TokenExchangeError, "token")
        token = body.get("access_token")
        if not token:
            msg = "failed to get access token: response has no access_token"
            raise TokenExchangeError(msg, status_code=resp.status_code, step="get_access_token")
        return str(token)

    async def revoke_token(self, client_id: str, client_secret: str) -> None:
        """Revoke this client's access token on the server.

        Raises
        ------
        TokenRevocationError
            If the server refuses the revocation.
        """
        await self._post_form(
            "/oauth/revoke",
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "token": self.access_token,
            },
            TokenRevocationError,
            "revoke token",
        )
