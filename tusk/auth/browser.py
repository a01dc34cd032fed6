"""Best-effort launch of the system browser."""

from __future__ import annotations

import logging
import subprocess
import sys

from ..exceptions import BrowserLaunchError


logger = logging.getLogger("tusk.auth")


def _open_command(url: str, platform: str) -> list[str]:
    """Build the native "open URL" command for a ``sys.platform`` value."""
    if platform == "darwin":
        return ["open", url]
    if platform == "win32":
        return ["rundll32", "url.dll,FileProtocolHandler", url]
    if platform.startswith(("linux", "freebsd", "openbsd", "netbsd")):
        return ["xdg-open", url]
    msg = f"unsupported platform: {platform}"
    raise BrowserLaunchError(msg, platform=platform)


def open_browser(url: str, platform: str | None = None) -> None:
    """Open ``url`` in the default browser without waiting for it.

    Parameters
    ----------
    url : str
        The URL to open.
    platform : str, optional
        Override for ``sys.platform``.

    Raises
    ------
    BrowserLaunchError
        If the platform is unsupported or the launcher cannot be started.
    """
    command = _open_command(url, platform or sys.platform)
    try:
        subprocess.Popen(  # noqa: S603  # pylint: disable=consider-using-with
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        msg = f"failed to run {command[0]}: {exc}"
        raise BrowserLaunchError(msg) from exc
    logger.debug("Launched %s for authorization URL", command[0])
