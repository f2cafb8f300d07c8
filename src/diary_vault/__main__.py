# Diary Vault - Command Line Entry Point
#
#   diary-vault serve [--host H] [--port P]   run the local API
#   diary-vault status                        does a vault exist?
#   diary-vault export OUTPUT                 copy the encrypted backup file
#
# None of these commands ask for the password: export hands out the
# encrypted record exactly as stored.

import sys
import argparse
from pathlib import Path

from . import __version__
from .core import EventSeverity, EventType, get_audit_logger, load_config
from .vault import RecordStorage, VaultError, VaultNotFound, VaultSession


def _build_parser(config) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diary-vault",
        description="Diary Vault - password-protected, locally encrypted diary",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Diary Vault v{__version__}"
    )

    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the local API server (default)")
    serve.add_argument(
        "--host",
        default=config.api_host,
        help=f"Bind host (default: {config.api_host})"
    )
    serve.add_argument(
        "--port",
        type=int,
        default=config.api_port,
        help=f"Bind port (default: {config.api_port})"
    )

    commands.add_parser("status", help="Show where the vault lives and whether it exists")

    export = commands.add_parser("export", help="Write the encrypted backup file")
    export.add_argument("output", type=Path, help="Destination file (e.g. diary-backup.json)")

    return parser


def _serve(args) -> int:
    from .api.main import start_api_server

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Diary vault API starting",
        details={"version": __version__, "host": args.host, "port": args.port}
    )

    print("=" * 60)
    print(f"  Diary Vault API on {args.host}:{args.port}")
    print("  Press Ctrl+C to stop")
    print("=" * 60)

    try:
        start_api_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    return 0


def main(argv=None) -> int:
    """Main entry point for the diary-vault command."""
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    parser = _build_parser(config)
    args = parser.parse_args(argv)

    if args.command in (None, "serve"):
        if args.command is None:
            args = parser.parse_args(["serve"])
        return _serve(args)

    session = VaultSession(RecordStorage(config.vault_path), iterations=config.kdf_iterations)

    if args.command == "status":
        try:
            state = "present" if session.vault_exists else "not created"
        except VaultError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Vault file: {config.vault_path} ({state})")
        return 0

    if args.command == "export":
        try:
            data = session.export_record()
            args.output.write_bytes(data)
        except VaultNotFound as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except (OSError, VaultError) as e:
            print(f"Error: could not export vault: {e}", file=sys.stderr)
            return 1
        print(f"Exported encrypted backup to {args.output}")
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
