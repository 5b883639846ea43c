"""smsrental process entry-point.

Usage:
    python -m smsrental serve [--host HOST] [--port PORT]
    python -m smsrental sync [--once]

``serve`` runs the HTTP API under uvicorn.  ``sync`` runs the background
auto-sync: continuous by default, sleeping a randomised interval between
passes; ``--once`` runs a single pass and exits.

:func:`configure_logging` is called before anything else so every later
import gets a configured logger.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from smsrental.core import configure_logging
from smsrental.core.exceptions import ConfigError
from smsrental.core.settings import Settings


async def _run_sync(settings: Settings, *, once: bool) -> None:
    from smsrental.orchestrator.scheduler import run_continuous, run_sync_pass  # noqa: PLC0415
    from smsrental.service import RentalService  # noqa: PLC0415

    service = await RentalService.open(settings)
    try:
        if once:
            await run_sync_pass(service.repo, service.orchestrator)
        else:
            await run_continuous(service.repo, service.orchestrator, settings)
    finally:
        await service.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smsrental",
        description="SMS rental aggregator: HTTP API and background message sync.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default=None, help="Override API_HOST.")
    serve.add_argument("--port", type=int, default=None, help="Override API_PORT.")

    sync = sub.add_parser("sync", help="Run the auto-sync scheduler.")
    sync.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync pass and exit instead of looping continuously.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"smsrental: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    try:
        settings = Settings()
        if args.command == "serve":
            import uvicorn  # noqa: PLC0415

            from smsrental.api import create_app  # noqa: PLC0415

            host = args.host or settings.api_host
            port = args.port or settings.api_port
            logger.info("Serving smsrental API on %s:%d", host, port)
            uvicorn.run(create_app(settings), host=host, port=port, log_config=None)
        else:
            logger.info("Running %s sync", "a single" if args.once else "continuous")
            asyncio.run(_run_sync(settings, once=args.once))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)
    except asyncio.CancelledError:
        logger.info("Shutdown complete, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
