"""Logging configuration for folio."""

import logging
import sys

from folio.config import section


def setup_logger(name: str = "folio", level: str | None = None) -> logging.Logger:
    """Create and configure a logger."""
    level = level or section("app").get("log_level", "INFO")
    logger = logging.getLogger(f"folio.{name}" if name != "folio" else name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter(
            "%(asctime)s | %(name)-20s | %(levelname)-7s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger
