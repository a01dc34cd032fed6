"""Ephemeral localhost HTTP server for OAuth2 redirect capture.

One server instance is one authorization session: it listens on a
random ephemeral port, serves ``GET /callback`` on a daemon thread,
and hands the first code (or error) it sees to a single waiter.
Everything after the first result is answered but discarded.
"""

# pylint: disable=C0103,W0212

from __future__ import annotations

import html
import logging
import queue
import re
import threading

from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import AuthenticationError, AuthFlowTimeout, ListenerBindError, MissingCodeError
from .ports import allocate_port


logger = logging.getLogger("tusk.auth")

CALLBACK_PATH = "/callback"

TIMEOUT_MESSAGE = "timeout waiting for authorization"

_CODE_IN_PATH = re.compile(r"(code=)[^&\s]+")

_SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Tusk Authorization</title>
<style>
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f5f5f5; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,.1); }
  h1 { color: #2ecc71; }
</style></head>
<body><div class="card">
  <h1>&#128640; Authorization Successful!</h1>
  <p>You can close this window and return to your terminal.</p>
</div></body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Tusk Authorization</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f5f5f5; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,.1); }}
  h1 {{ color: #cc0000; }}
</style></head>
<body><div class="card">
  <h1>&#x274C; Authorization Failed</h1>
  <p>{error}</p>
  <p>Return to your terminal and run <code>tusk auth</code> again.</p>
</div></body></html>"""


@dataclass(frozen=True)
class CallbackResult:
    """The single outcome of a session: a code or an error, never both."""

    code: str | None = None
    error: AuthenticationError | None = None


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer that reports handler failures through the tusk logger."""

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.debug("OAuth callback request from %s failed", client_address, exc_info=True)


class OAuthCallbackServer:
    """Single-use localhost listener for the authorization-code redirect.

    The port is chosen at construction so the redirect URI can be
    registered with the server before anything is bound.

    Parameters
    ----------
    port : int, optional
        Port to bind. Drawn from ``allocate_port()`` when omitted;
        ``0`` lets the OS choose.
    host : str
        Bind address (default ``"localhost"``).
    grace_period : float
        Seconds in-flight requests get to finish during shutdown.
    """

    def __init__(
        self,
        port: int | None = None,
        host: str = "localhost",
        grace_period: float = 5.0,
    ) -> None:
        """Initialize the callback server without binding it."""
        self._host = host
        self._port = allocate_port() if port is None else port
        self._grace_period = grace_period
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._results: queue.Queue[CallbackResult] = queue.Queue(maxsize=1)
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    @property
    def port(self) -> int:
        """The port this session listens on."""
        return self._port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI to register, e.g. ``http://localhost:54321/callback``."""
        return f"http://localhost:{self._port}{CALLBACK_PATH}"

    @property
    def is_running(self) -> bool:
        """Whether the serving thread is alive and shutdown has not begun."""
        return (
            not self._shut_down and self._thread is not None and self._thread.is_alive()
        )

    def __enter__(self) -> OAuthCallbackServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def start(self) -> str:
        """Bind the port and serve on a daemon thread.

        The socket is listening when this returns, so connections made
        afterwards queue up even before the thread picks them up.

        Returns
        -------
        str
            The redirect URI.

        Raises
        ------
        ListenerBindError
            If the port cannot be bound.
        """
        if self._server is not None or self._shut_down:
            msg = "callback server can only be started once"
            raise RuntimeError(msg)

        try:
            server = _CallbackHTTPServer((self._host, self._port), self._make_handler())
        except OSError as exc:
            msg = f"failed to start callback server: {exc}"
            raise ListenerBindError(msg, port=self._port, step="start_listener") from exc

        self._port = server.server_address[1]
        self._server = server
        self._thread = threading.Thread(
            target=self._serve,
            name=f"tusk-oauth-callback-{self._port}",
            daemon=True,
        )
        self._thread.start()

        logger.debug("OAuth callback server started on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_code(self, timeout: float) -> str:
        """Block until a code, an error, or the timeout resolves the session.

        The listener is shut down before this returns or raises.

        Parameters
        ----------
        timeout : float
            Maximum seconds to wait.

        Returns
        -------
        str
            The authorization code.

        Raises
        ------
        MissingCodeError
            If the redirect carried no code.
        AuthFlowTimeout
            If nothing arrived in time.
        AuthenticationError
            If the serve loop itself failed.
        """
        try:
            result = self._results.get(timeout=timeout)
        except queue.Empty:
            raise AuthFlowTimeout(TIMEOUT_MESSAGE, timeout=timeout) from None
        finally:
            self.shutdown()

        if result.error is not None:
            raise result.error
        return result.code or ""

    def shutdown(self) -> None:
        """Stop serving and release the socket. Safe to call any number of times."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        server, thread = self._server, self._thread
        if server is None:
            return

        # BaseServer.shutdown() waits for the request in flight, so bound it.
        stopper = threading.Thread(target=server.shutdown, daemon=True)
        stopper.start()
        stopper.join(timeout=self._grace_period)
        if stopper.is_alive():
            logger.warning(
                "Callback server still busy after %.1fs; closing listener", self._grace_period
            )
        server.server_close()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._grace_period)

        logger.debug("OAuth callback server on port %d stopped", self._port)

    def _offer(self, result: CallbackResult) -> bool:
        """Fill the result slot unless it is already taken. Never blocks."""
        try:
            self._results.put_nowait(result)
        except queue.Full:
            logger.debug("Ignoring extra OAuth callback; a result is already pending")
            return False
        return True

    def _serve(self) -> None:
        server = self._server
        if server is None:
            return
        try:
            server.serve_forever(poll_interval=0.1)
        except Exception as exc:  # noqa: BLE001
            if self._shut_down:
                return
            logger.exception("OAuth callback server crashed")
            msg = f"callback server failed: {exc}"
            self._offer(CallbackResult(error=AuthenticationError(msg, step="serve")))

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        server_ref = self
        socket_timeout = self._grace_period or None

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for the OAuth2 redirect."""

            timeout = socket_timeout

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)
                if parsed.path != CALLBACK_PATH:
                    self.send_error(404)
                    return

                params = parse_qs(parsed.query)
                code = params.get("code", [""])[0]
                if code:
                    server_ref._offer(CallbackResult(code=code))
                    self._send_html(200, _SUCCESS_HTML)
                    return

                provider_error = params.get("error", [""])[0]
                if provider_error:
                    description = params.get("error_description", [""])[0] or provider_error
                    error = MissingCodeError(
                        f"authorization denied: {description}", step="callback"
                    )
                    page = _ERROR_HTML.format(error=html.escape(description, quote=True))
                else:
                    error = MissingCodeError("no authorization code received", step="callback")
                    page = _ERROR_HTML.format(error="Authorization failed: no code received.")

                server_ref._offer(CallbackResult(error=error))
                self._send_html(400, page)

            def _send_html(self, status: int, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                """Route http.server access logs to the tusk logger."""
                line = _CODE_IN_PATH.sub(r"\1[REDACTED]", format % args)
                logger.debug("OAuth callback server: %s", line)

        return _CallbackHandler
