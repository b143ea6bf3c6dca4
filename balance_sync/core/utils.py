"""Shared utility functions for the balance sync engine."""

import logging
from datetime import UTC, datetime, time
from zoneinfo import ZoneInfo

import colorlog


ROOT_LOGGER = "balance-sync"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the project logger, which carries a colorized console handler.

    Component loggers (``balance-sync.<component>``) propagate to the project
    logger, so handlers added there (such as the file handler) see every record.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logging.getLogger(name)


def utcnow() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def utcnow_iso() -> str:
    """Get the current UTC time as an ISO8601 string."""
    return utcnow().isoformat()


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def end_of_day(now: datetime | None, timezone: str) -> datetime:
    """Return the last instant of the calendar day containing ``now`` in ``timezone``.

    A transaction dated any time today counts as due, even when it was created
    earlier in the day, so eligibility is always checked against this cutoff
    rather than the raw clock.
    """
    local_now = as_utc(now or utcnow()).astimezone(ZoneInfo(timezone))
    return datetime.combine(local_now.date(), time.max, tzinfo=local_now.tzinfo)
