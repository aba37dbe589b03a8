"""Centralized logging configuration."""

import logging
import sys

from config import settings

NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "urllib3",
    "plaid",
    "keyring",
)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the application.

    Log records go to stderr so ``clerk print`` output on stdout stays a
    clean Ledger file. The root level comes from ``level`` when given
    (the CLI's ``--verbose``), otherwise from settings.LOG_LEVEL.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        stream=sys.stderr,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
