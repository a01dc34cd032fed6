"""HTTP helpers for simulating the browser side of the redirect."""

from __future__ import annotations

import contextlib
import threading
import time

from urllib.error import HTTPError
from urllib.request import urlopen

from tests.constants import HTTP_TIMEOUT, REDIRECT_DELAY


Response = tuple[int, str, dict[str, str]]


def http_get(url: str, timeout: float = HTTP_TIMEOUT) -> Response:
    """GET ``url`` and return status, body and headers, including for 4xx."""
    try:
        with urlopen(url, timeout=timeout) as resp:  # noqa: S310
            return resp.status, resp.read().decode("utf-8"), dict(resp.headers)
    except HTTPError as exc:
        return exc.code, exc.read().decode("utf-8"), dict(exc.headers)


def send_later(
    url: str,
    delay: float = REDIRECT_DELAY,
    responses: list[Response] | None = None,
) -> threading.Thread:
    """Simulate the browser redirect on a background thread."""

    def _send() -> None:
        time.sleep(delay)
        with contextlib.suppress(OSError):
            result = http_get(url)
            if responses is not None:
                responses.append(result)

    t = threading.Thread(target=_send, daemon=True)
    t.start()
    return t
