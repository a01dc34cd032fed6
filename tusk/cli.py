"""Command-line interface for Tusk."""

from __future__ import annotations

import argparse
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from . import log
from .api.client import MastodonClient
from .auth.flow import AuthFlowManager, describe_step, format_duration
from .config import _user_config_path, get_settings
from .exceptions import (
    AuthFlowTimeout,
    ConfigurationError,
    MissingCodeError,
    TokenRevocationError,
    TuskException,
)
from .store import ACCESS_TOKEN_KEY, CLIENT_ID_KEY, CLIENT_SECRET_KEY, DOMAIN_KEY, open_store
from .utils.async_helpers import run_async


if TYPE_CHECKING:
    from .config import TuskSettings


def _error(msg: str) -> None:
    print(f"✗ {msg}", file=sys.stderr)


def _success(msg: str) -> None:
    print(f"✓ {msg}")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="tusk",
        description="A command-line client for Mastodon",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log flow and HTTP details to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    auth_parser = subparsers.add_parser(
        "auth",
        help="Authenticate with a Mastodon instance",
    )
    auth_parser.add_argument(
        "--domain",
        "-d",
        type=str,
        default=None,
        help="Instance domain, e.g. mastodon.social (prompted for when omitted)",
    )
    auth_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Only print the authorization URL",
    )

    subparsers.add_parser(
        "logout",
        help="Log out and revoke the access token",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        try:
            settings = get_settings()
        except ValidationError as exc:
            msg = f"invalid configuration: {exc}"
            raise ConfigurationError(msg) from exc

        log.configure(settings.log.level, settings.log.format)
        if args.debug:
            log.enable_debug()

        if args.command == "auth":
            return handle_auth(args, settings)
        if args.command == "logout":
            return handle_logout(args, settings)
        if args.command == "config":
            return handle_config(args, settings)
    except TuskException as exc:
        _error(str(exc))
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    parser.print_help()
    return 0


def handle_auth(args: argparse.Namespace, settings: TuskSettings) -> int:
    """Handle the auth command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : TuskSettings
        Active settings.

    Returns
    -------
    int
        Exit code.
    """
    with open_store(settings) as store:
        flow = AuthFlowManager(store, settings)
        try:
            result = flow.run(domain=args.domain, launch_browser=not args.no_browser)
        except AuthFlowTimeout as exc:
            _error(
                f"Authorization was not completed within {format_duration(exc.timeout)}. "
                "Run 'tusk auth' to try again."
            )
            return 1
        except MissingCodeError as exc:
            _error(f"Authorization did not complete: {exc.message}. Run 'tusk auth' to try again.")
            return 1
        except TuskException as exc:
            _error(f"Authentication failed while {describe_step(flow.failed_state)}: {exc}")
            return 1

    if result.success:
        _success("Authentication successful!")
    return 0


def handle_logout(args: argparse.Namespace, settings: TuskSettings) -> int:  # pylint: disable=unused-argument
    """Handle the logout command.

    A failed revocation on the server is reported, but local data is
    cleared regardless.
    """
    with open_store(settings) as store:
        access_token = store.get(ACCESS_TOKEN_KEY)
        if not access_token:
            print("Not currently authenticated.")
            return 0

        client = MastodonClient(
            store.get(DOMAIN_KEY) or "",
            access_token=access_token,
            timeout=settings.http.timeout,
            user_agent=settings.http.user_agent,
        )

        print("Revoking access token...")
        try:
            run_async(
                client.revoke_token(
                    store.get(CLIENT_ID_KEY) or "",
                    store.get(CLIENT_SECRET_KEY) or "",
                )
            )
        except TokenRevocationError as exc:
            _error(f"Failed to revoke token on server: {exc}")
            print("Continuing to clear local data...")

        store.clear_all()

    _success("Logged out successfully!")
    return 0


def handle_config(args: argparse.Namespace, settings: TuskSettings) -> int:
    """Handle the config command."""
    if args.sources:
        return show_config_sources()

    output = settings.to_toml() if args.toml else settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    env_file = os.environ.get("TUSK_CONFIG_FILE")
    sources: list[tuple[str, Path | None]] = [
        ("Built-in defaults", None),
        ("User config", _user_config_path()),
        ("TUSK_CONFIG_FILE", Path(env_file).expanduser() if env_file else None),
    ]

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<30} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path in sources:
        if name == "Built-in defaults":
            status, path_display = "✓ Active", ""
        elif path is None:
            status, path_display = "✗ Not set", ""
        elif path.exists():
            status, path_display = "✓ Found", str(path)
        else:
            status, path_display = "✗ Not found", str(path)
        print(f"{name:<30} {status:<15} {path_display}")

    tusk_vars = [k for k in os.environ if k.startswith("TUSK_")]
    if tusk_vars:
        status = f"✓ {len(tusk_vars)} vars"
        path_display = ", ".join(tusk_vars[:3]) + ("..." if len(tusk_vars) > 3 else "")
    else:
        status, path_display = "✗ No vars", ""
    print(f"{'Environment variables':<30} {status:<15} {path_display}")

    print("\nNote: Later sources override earlier ones.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
