"""
Codebox CLI Entry Point

Run with: python -m codebox
"""

import argparse
import asyncio
import json
import sys


def reap(args) -> int:
    """Release resources of sessions left running by a previous server process."""
    from codebox.config import get_config
    from codebox.core.service import SandboxService
    from codebox.monitoring.logging import configure_logging

    config = get_config()
    configure_logging(level=config.log_level, json_format=config.log_json, log_file=config.log_file)

    service = SandboxService(config)
    try:
        report = asyncio.run(service.reap_orphans())
    finally:
        service.db.dispose()

    print(json.dumps(report, indent=2))
    return 1 if report["failed"] else 0


def main():
    parser = argparse.ArgumentParser(
        prog="codebox",
        description="Code-execution sandbox service",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("server", help="Run the HTTP API server")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")  # nosec B104
    server_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    server_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # Reap command
    subparsers.add_parser("reap", help="Clean up containers and directories orphaned by a previous run")

    args = parser.parse_args()

    if args.command == "server":
        from codebox.api.server import run_server
        run_server(host=args.host, port=args.port, reload=args.reload)

    elif args.command == "reap":
        sys.exit(reap(args))

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
