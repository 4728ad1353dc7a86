"""Command-line interface for vault-sync.

Subcommands map one-to-one onto ``VaultSync`` commands::

    vault-sync pull
    vault-sync push
    vault-sync reset --yes
    vault-sync scan
    vault-sync status
    vault-sync errors
    vault-sync clear [--errors]
    vault-sync init-config

Exit codes: 0 on success, 1 when a sync aborted or recorded failures,
2 on configuration errors.
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from . import __version__
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import build_config, to_config
from .logger import setup_logging
from .sync.errors import SyncError
from .sync.reporter import (
    format_errors,
    format_status,
    format_sync_report,
    report_to_json,
)
from .sync.service import VaultSync

logger = logging.getLogger(__name__)


def add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the flags that override remote and vault settings."""
    parser.add_argument(
        "--server-url",
        help="Override token server URL (takes precedence over VAULT_SYNC_SERVER_URL and config files)",
    )
    parser.add_argument(
        "--refresh-token",
        help="Override refresh token (visible in process list -- prefer VAULT_SYNC_REFRESH_TOKEN)",
    )
    parser.add_argument("--vault", help="Vault directory")
    parser.add_argument("--vault-name", help="Vault name on the remote store")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )


def connection_overrides(args: argparse.Namespace) -> dict:
    """Map flags added by add_connection_arguments onto Config field names."""
    overrides: dict = {}
    if args.server_url:
        overrides["server_url"] = args.server_url
    if args.refresh_token:
        overrides["refresh_token"] = args.refresh_token
    if args.vault:
        overrides["vault_path"] = args.vault
    if args.vault_name:
        overrides["vault_name"] = args.vault_name
    if args.insecure:
        overrides["insecure"] = True
    return overrides


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-sync",
        description="Keep a local vault and its remote copy in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First upload of an existing vault
  vault-sync --vault ~/Notes scan
  vault-sync --vault ~/Notes push

  # Fetch remote changes
  vault-sync pull

  # Throw away local changes
  vault-sync reset --yes
        """,
    )
    add_connection_arguments(parser)
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of text",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"vault-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("pull", help="Apply remote changes to the vault")
    sub.add_parser("push", help="Pull, then upload pending local changes")
    reset = sub.add_parser(
        "reset", help="Discard local changes and match the remote store"
    )
    reset.add_argument(
        "--yes",
        action="store_true",
        help="Confirm that local changes may be discarded",
    )
    sub.add_parser("scan", help="Queue every untracked local file for upload")
    sub.add_parser("status", help="Show the sync queue")
    sub.add_parser("errors", help="Show recorded per-file failures")
    clear = sub.add_parser("clear", help="Empty the sync queue")
    clear.add_argument(
        "--errors",
        action="store_true",
        help="Also clear recorded failures",
    )
    sub.add_parser(
        "init-config", help="Write a starter config file if none exists"
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    overrides = connection_overrides(args)
    if args.debug:
        overrides["debug"] = True
    return overrides


def _emit(text: str, payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(text)


async def _run_command(sync: VaultSync, args: argparse.Namespace) -> int:
    match args.command:
        case "pull" | "push" | "reset":
            if args.command == "reset":
                if not args.yes:
                    print(
                        "Reset discards all local changes. Re-run with --yes to proceed.",
                        file=sys.stderr,
                    )
                    return 1
                report = await sync.reset(confirm=True)
            elif args.command == "pull":
                report = await sync.pull()
            else:
                report = await sync.push()
            _emit(format_sync_report(report), report_to_json(report), args.json)
            return 0 if report.success and not report.errors else 1
        case "scan":
            added = await sync.scan_all_files()
            _emit(
                f"Queued {added} entries. Use 'vault-sync push' to upload them.",
                {"added": added},
                args.json,
            )
            return 0
        case "status":
            status = sync.status()
            _emit(format_status(status), status, args.json)
            return 0
        case "errors":
            summary = sync.errors()
            _emit(format_errors(summary), summary, args.json)
            return 0
        case "clear":
            count = await sync.clear_queue(errors=args.errors)
            _emit(
                f"Cleared {count} queued operations.",
                {"cleared": count},
                args.json,
            )
            return 0
        case _:
            raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "init-config":
        path = ensure_config()
        print(f"Config file: {path}")
        return 0

    load_dotenv()
    try:
        unified = build_config(load_hierarchical_config())
        config = to_config(unified, _overrides(args))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )

    try:
        return asyncio.run(_run_command(VaultSync(config), args))
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
