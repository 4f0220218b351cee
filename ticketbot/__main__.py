"""
Command-line entry point.

    python -m ticketbot                    # continuous polling
    python -m ticketbot --ticket 1234      # single ticket
    python -m ticketbot --ticket 1234 --force

SINGLE_TICKET_NUMBER / FORCE_UPDATE env vars select single-ticket mode too.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from ticketbot.common.log_setup import configure_logging
from ticketbot.config import Settings
from ticketbot.engine import RunMode
from ticketbot.errors import BotError
from ticketbot.models import Outcome
from ticketbot.runtime import build_engine

logger = logging.getLogger("ticketbot.cli")

SUCCESS_OUTCOMES = {
    Outcome.PROCESSED,
    Outcome.SKIPPED_CACHE,
    Outcome.SKIPPED_PROBE,
    Outcome.SKIPPED_DELTA,
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ticketbot", description="Ticket analysis polling bot.")
    parser.add_argument("--ticket", help="Process a single ticket by its number and exit.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --ticket: bypass cache, probe and delta checks.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    try:
        engine = build_engine(settings)
    except RuntimeError as exc:
        logger.error("Startup failed: %s", exc)
        return 2

    number = args.ticket or settings.single_ticket_number
    if number:
        outcome = engine.run(RunMode.SINGLE, ticket_number=number, force=args.force or settings.force_update)
        return 0 if outcome in SUCCESS_OUTCOMES else 1
    try:
        engine.run(RunMode.POLL)
    except (RuntimeError, BotError) as exc:
        logger.error("Bootstrap failed: %s", exc)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
