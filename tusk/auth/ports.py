"""Random ephemeral port selection for the OAuth callback listener."""

from __future__ import annotations

import secrets

from ..exceptions import PortAllocationError


MIN_PORT = 49152
MAX_PORT = 65535


def allocate_port() -> int:
    """Pick a port uniformly from the dynamic/private range.

    The port is not probed; a bind failure surfaces later from
    ``OAuthCallbackServer.start``.

    Returns
    -------
    int
        A port in ``[MIN_PORT, MAX_PORT]``.

    Raises
    ------
    PortAllocationError
        If the operating system random source is unavailable.
    """
    try:
        offset = secrets.randbelow(MAX_PORT - MIN_PORT + 1)
    except (OSError, NotImplementedError) as exc:
        msg = f"failed to get random port: {exc}"
        raise PortAllocationError(msg, step="allocate_port") from exc
    return MIN_PORT + offset
