"""Command line entry point.

    python -m marketplace_reconciler [serve]   run the HTTP service (default)
    python -m marketplace_reconciler init-db   create the database schema
    python -m marketplace_reconciler resync    import every marketplace subscription once
"""

import argparse
import json
import os
import sys

import uvicorn

__version__ = "0.1.0"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace-reconciler",
        description="Marketplace Subscription Reconciler - subscription lifecycle service",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/reconciler.yaml"),
        help="Path to reconciler.yaml (default: config/reconciler.yaml)",
    )
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL"),
        help="SQLAlchemy database URL, overrides the config file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve_parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve_parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Auto-reload on code changes (development only)",
    )

    subparsers.add_parser("init-db", help="Create missing database tables and exit")
    subparsers.add_parser("resync", help="Import all marketplace subscriptions not yet stored")
    return parser


def _serve(args: argparse.Namespace) -> None:
    if args.log_format == "console":
        print(f"Marketplace Subscription Reconciler v{__version__} on {args.host}:{args.port}")
        print(f"Config: {args.config}")

    uvicorn.run(
        "marketplace_reconciler.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
        access_log=False,  # RequestLoggingMiddleware logs requests
    )


def _init_db() -> None:
    from marketplace_reconciler.database import get_database

    get_database().create_all()


def _resync() -> None:
    from marketplace_reconciler.services.registry import get_services, reset_services

    services = get_services()
    try:
        services.database.create_all()
        summary = services.intake.full_catalog_resync()
    finally:
        reset_services()
    print(
        json.dumps(
            {"created": summary.created, "skipped": summary.skipped, "failed": summary.failed},
            indent=2,
        )
    )
    if summary.failed:
        sys.exit(2)


def main() -> None:
    """Parse arguments, export settings to the environment and run the command."""
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "serve"
    if args.command is None:
        args = parser.parse_args([*sys.argv[1:], "serve"])

    # Modules read these when they are first imported
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config
    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url

    if command != "serve":
        from marketplace_reconciler.logging_config import configure_logging

        configure_logging(log_level=args.log_level, json_format=args.log_format == "json")

    try:
        if command == "serve":
            _serve(args)
        elif command == "init-db":
            _init_db()
        else:
            _resync()
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"{command} failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
