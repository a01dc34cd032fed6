"""Configuration system for Tusk using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. ~/.config/tusk/config.toml (user-level)
3. The file named by TUSK_CONFIG_FILE
4. Environment variables (highest priority)

Environment variables use TUSK_ prefix with nested delimiter __.
Example: TUSK_OAUTH__AUTH_TIMEOUT_SECONDS, TUSK_LOG__LEVEL
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _user_config_path() -> Path:
    """Location of the user-level config file for this platform."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "tusk" / "config.toml"
    return Path("~/.config/tusk/config.toml").expanduser()


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    user_config = _user_config_path()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("TUSK_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config).expanduser()
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    from .exceptions import ConfigurationError

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            msg = f"Could not read configuration file {config_file}: {exc}"
            raise ConfigurationError(msg, path=str(config_file)) from exc
        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def default_data_dir() -> Path:
    """Directory holding the local database.

    ``$XDG_DATA_HOME/tusk`` (or ``~/.local/share/tusk``) on Linux and macOS,
    ``%APPDATA%\\tusk`` on Windows.
    """
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            from .exceptions import ConfigurationError

            raise ConfigurationError("APPDATA environment variable not set")
        return Path(appdata) / "tusk"
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data and sys.platform != "darwin":
        return Path(xdg_data) / "tusk"
    return Path.home() / ".local" / "share" / "tusk"


class OAuthSettings(BaseSettings):
    """Authorization flow settings.

    Environment prefix: TUSK_OAUTH__
    Example: TUSK_OAUTH__SCOPES="read write"
    """

    model_config = SettingsConfigDict(
        env_prefix="TUSK_OAUTH__",
        extra="ignore",
    )

    app_name: str = Field(
        default="Tusk CLI",
        description="Client name sent when registering the application",
    )
    scopes: str = Field(
        default="read write follow",
        description="Space-separated OAuth2 scopes to request",
    )
    auth_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum seconds to wait for the browser redirect",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds in-flight callback requests get before the listener is closed",
    )
    callback_host: str = Field(
        default="localhost",
        description="Interface the callback listener binds to",
    )
    open_browser: bool = Field(
        default=True,
        description="Try to open the system browser at the authorization URL",
    )

    @field_validator("scopes")
    @classmethod
    def _normalize_scopes(cls, v: str) -> str:
        """Collapse commas and repeated whitespace into single spaces."""
        return " ".join(v.replace(",", " ").split())


class HTTPSettings(BaseSettings):
    """REST client settings.

    Environment prefix: TUSK_HTTP__
    """

    model_config = SettingsConfigDict(
        env_prefix="TUSK_HTTP__",
        extra="ignore",
    )

    timeout: float = Field(default=30.0, gt=0)
    user_agent: str = "tusk-cli"


class StoreSettings(BaseSettings):
    """Local database settings.

    Environment prefix: TUSK_STORE__
    Example: TUSK_STORE__PATH=/tmp/tusk.db
    """

    model_config = SettingsConfigDict(
        env_prefix="TUSK_STORE__",
        extra="ignore",
    )

    path: str | None = Field(
        default=None,
        description="Database file (defaults to the platform data directory)",
    )

    def resolve_path(self) -> Path:
        """Return the configured database path or the platform default."""
        if self.path:
            return Path(self.path).expanduser()
        return default_data_dir() / "tusk.db"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: TUSK_LOG__
    Example: TUSK_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="TUSK_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class TuskSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: TUSK__
    """

    model_config = SettingsConfigDict(
        env_prefix="TUSK__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        # Explicit keyword arguments win over TOML files
        merged = _deep_merge(_load_toml_config(), data)
        super().__init__(**merged)

    def _sections(self) -> list[str]:
        return ["oauth", "http", "store", "log"]

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# Tusk Configuration", "# Generated by: tusk config --toml", ""]

        all_data = self.model_dump()

        for section_name in self._sections():
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data.get(section_name, {}).items():
                if field_value is None:
                    continue
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            lines.append("")

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["Tusk Configuration", "=" * 60]

        show_sections = [
            ("Authorization", "oauth"),
            ("HTTP", "http"),
            ("Store", "store"),
            ("Logging", "log"),
        ]

        all_data = self.model_dump()

        for display_name, attr_name in show_sections:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:24} = {value_str}")

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> TuskSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return TuskSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
