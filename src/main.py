"""
Main entry point for the Cooperative Lot Traceability service.

Commands:
    init-db                     Create database tables
    verify-db                   Check that the core tables exist
    reset-db --yes              Drop and recreate all tables
    serve [--host --port]       Run the HTTP API
    trace <lot_code>            Print the public trace of a lot as JSON
    provenance <lot_id>         Print the full provenance of a lot as JSON
"""

import argparse
import json
import sys

from src.services.database import (
    close_connections,
    initialize_app_database,
    reset_database,
    verify_database,
)
from src.services.dto_utils import to_jsonable
from src.services.exceptions import TraceabilityError
from src.services.logging_utils import configure_logging
from src.utils.config import get_config


def init_db_cmd() -> int:
    print("Initializing database...")
    initialize_app_database()
    print("Database initialized successfully")
    return 0


def verify_db_cmd() -> int:
    if verify_database():
        print("Database OK")
        return 0
    print("ERROR: database is missing core tables; run init-db")
    return 1


def reset_db_cmd(confirmed: bool) -> int:
    if not confirmed:
        print("ERROR: reset-db deletes all data; pass --yes to confirm")
        return 1
    reset_database(confirm=True)
    print("Database reset")
    return 0


def serve_cmd(host: str, port: int, debug: bool) -> int:
    from src.api import create_app

    initialize_app_database()
    app = create_app()
    app.run(host=host, port=port, debug=debug)
    return 0


def trace_cmd(lot_code: str) -> int:
    from src.services.public_trace_service import public_trace

    try:
        view = public_trace(lot_code)
    except TraceabilityError as e:
        print(f"ERROR: {e.message}")
        return 1
    print(json.dumps(to_jsonable(view), indent=2))
    return 0


def provenance_cmd(lot_id: int) -> int:
    from src.services.provenance_service import resolve_provenance

    try:
        result = resolve_provenance(lot_id)
    except TraceabilityError as e:
        print(f"ERROR: {e.message}")
        return 1
    print(json.dumps(to_jsonable(result), indent=2))
    if not result.complete:
        print("WARNING: provenance chain is incomplete; see log for details")
    return 0


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Production lot consolidation and traceability",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Create tables:
    python -m src.main init-db

  Run the API on port 8000:
    python -m src.main serve --port 8000

  Show what a buyer sees for a lot:
    python -m src.main trace LOT-2025-001
""",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("verify-db", help="Check that the core tables exist")
    reset_parser = subparsers.add_parser("reset-db", help="Drop and recreate all tables")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm data deletion")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=5000, help="Port")
    serve_parser.add_argument("--debug", action="store_true", help="Flask debug mode")

    trace_parser = subparsers.add_parser("trace", help="Print the public trace of a lot")
    trace_parser.add_argument("lot_code", help="Public lot code")

    provenance_parser = subparsers.add_parser("provenance", help="Print lot provenance")
    provenance_parser.add_argument("lot_id", type=int, help="Lot id")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    config = get_config()
    configure_logging(config.log_level)

    try:
        if args.command == "init-db":
            return init_db_cmd()
        elif args.command == "verify-db":
            return verify_db_cmd()
        elif args.command == "reset-db":
            return reset_db_cmd(args.yes)
        elif args.command == "serve":
            return serve_cmd(args.host, args.port, args.debug)
        elif args.command == "trace":
            return trace_cmd(args.lot_code)
        elif args.command == "provenance":
            return provenance_cmd(args.lot_id)
        else:
            print(f"Unknown command: {args.command}")
            return 1
    finally:
        close_connections()


if __name__ == "__main__":
    sys.exit(main())
