"""
Portal Pilot entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API or CLI).
"""

import argparse
import logging
import sys

from portalpilot.api.app import run_api
from portalpilot.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Portal Pilot application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the CRM Co-Pilot orchestrator")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API, or the API plus an interactive CLI (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Portal Pilot [%s mode]", args.mode)
    logger.debug(
        "Settings: %s",
        settings.model_dump(exclude={"GEMINI_API_KEY", "OPENAI_API_KEY", "HUBSPOT_ACCESS_TOKEN"}),
    )

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid CLI dependencies if not needed
    import threading  # pylint: disable=import-outside-toplevel

    from portalpilot.client.cli import (  # pylint: disable=import-outside-toplevel
        run_cli,
    )

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "127.0.0.1",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Run CLI in main thread
    run_cli()


if __name__ == "__main__":
    main()
