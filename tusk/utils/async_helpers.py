"""Async utility helpers for Tusk.

The CLI is synchronous; the REST client is async. These helpers
bridge the two.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    from collections.abc import Coroutine


T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
    """Run an async coroutine from sync code.

    NOTE: This function cannot be called from inside a running event
    loop. Use ``await`` directly in async code.

    Parameters
    ----------
    coro : Coroutine
        The coroutine to run.
    timeout : float, optional
        Timeout in seconds. ``None`` waits indefinitely.

    Returns
    -------
    T
        The result of the coroutine.

    Raises
    ------
    TimeoutError
        If the operation times out.
    RuntimeError
        If called from within a running event loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(asyncio.wait_for(coro, timeout))

    coro.close()
    raise RuntimeError(
        "run_async() cannot be called from a running event loop. Use 'await' directly instead."
    )
