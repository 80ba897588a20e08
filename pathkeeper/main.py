"""Main entry point for Pathkeeper."""

import argparse
import sys

from .config import load_config, reload_config
from .database.session import init_db


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = argparse.ArgumentParser(prog="pathkeeper", description="Pathfinder 2e campaign manager")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Bind port")
    args = parser.parse_args(argv)

    try:
        config = reload_config(args.config) if args.config else load_config()
        init_db(config.database.path)

        from .web.server import run_server

        run_server(args.host, args.port)
        return 0

    except KeyboardInterrupt:
        print("\nShutting down.")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
