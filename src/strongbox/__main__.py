# Strongbox - Main Entry Point
#
#   strongbox serve       Run the REST API (localhost only by default)
#   strongbox retention   Run one retention sweep and print the result
#   strongbox stats       Print statistics for active backups

import argparse
import json
import logging
import sys

from . import __version__


def _manager():
    from .backup import BackupManager
    from .config import BackupConfig

    return BackupManager(BackupConfig.from_env())


def main(argv=None):
    """Main entry point for Strongbox."""
    parser = argparse.ArgumentParser(
        prog="strongbox",
        description="Strongbox - encrypted backup storage with verified restore",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Strongbox v{__version__}"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)"
    )

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the REST API server")
    serve.add_argument(
        "--host",
        default="127.0.0.1",
        help="Backend host (default: 127.0.0.1)"
    )
    serve.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Backend port (default: 8000)"
    )

    sub.add_parser("retention", help="Expire old backups and enforce the count cap and storage budget")
    sub.add_parser("stats", help="Show backup statistics")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        from .api.main import start_api_server

        start_api_server(host=args.host, port=args.port)
        return 0

    if args.command == "retention":
        result = _manager().run_retention()
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    if args.command == "stats":
        stats = _manager().get_statistics()
        print(json.dumps(stats.to_dict(), indent=2))
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
