"""REST client for Mastodon-compatible servers."""

from __future__ import annotations

from .client import AppCredentials, MastodonClient


__all__ = [
    "AppCredentials",
    "MastodonClient",
]
