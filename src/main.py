#!/usr/bin/env python3
"""
Task Sync Service - Main Entry Point

Serves the task list API and the offline sync endpoint.

Usage:
    python -m src.main              # Serve on HOST:PORT
    python -m src.main --port 8080  # Override port
    python -m src.main --status     # Show task counts and exit
    python -m src.main --verbose    # Enable debug logging

Environment Variables:
    HOST            - Bind address (default 0.0.0.0)
    PORT            - Bind port (default 3000)
    DATABASE_PATH   - SQLite database file (default data/tasks.db)
    CORS_ENABLED    - "true" to enable CORS
    CORS_ORIGIN     - Comma-separated allowed origins (default *)
    APP_ENV         - development or production
    LOG_LEVEL       - Logging level (default INFO)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

import uvicorn

from config.settings import load_settings, ConfigurationError
from src.api.app import create_app
from src.storage.task_store import TaskStore, TaskStoreError


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        level: Level name from configuration
        verbose: If True, force DEBUG level logging
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Task list service with offline client synchronization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m src.main                    # Serve with .env / environment settings
    python -m src.main --port 8080        # Serve on another port
    python -m src.main --status           # Show task counts
    python -m src.main --env .env.local   # Use custom env file
        """,
    )

    parser.add_argument("--host", type=str, help="Bind host (overrides HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides PORT)")

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Show task counts without starting the server",
    )

    return parser.parse_args(argv)


def show_status(store: TaskStore) -> None:
    """
    Display current task counts.

    Args:
        store: Task store to query
    """
    logger = logging.getLogger(__name__)

    total = store.count(include_deleted=True)
    live = store.count(include_deleted=False)
    tasks = store.list_live()
    completed = sum(1 for t in tasks if t.completed)

    logger.info("=" * 50)
    logger.info("Task Status")
    logger.info("=" * 50)
    logger.info(f"Total stored tasks:  {total}")
    logger.info(f"Live tasks:          {live}")
    logger.info(f"Deleted (tombstone): {total - live}")
    logger.info(f"Completed:           {completed}")
    logger.info(f"Pending:             {live - completed}")
    logger.info("=" * 50)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    try:
        settings = load_settings(env_file=args.env)
    except ConfigurationError as e:
        setup_logging(verbose=args.verbose)
        logger = logging.getLogger(__name__)
        logger.error(f"Configuration error: {e}")
        logger.error("Please check your .env file or environment variables")
        return 1

    setup_logging(level=settings.log_level, verbose=args.verbose)
    logger = logging.getLogger(__name__)

    try:
        store = TaskStore(settings.storage.database_path)
    except TaskStoreError as e:
        logger.error(f"Could not open task store: {e}")
        return 1

    if args.status:
        show_status(store)
        return 0

    host = args.host or settings.server.host
    port = args.port or settings.server.port

    logger.info("Task Sync Service")
    logger.info("=" * 50)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Listening on http://{host}:{port}")

    try:
        app = create_app(store, cors=settings.cors)
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
        return 0
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
