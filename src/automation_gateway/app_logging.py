"""Logging configuration helpers."""

import logging


def configure_logging(level: str = "info") -> None:
    """Configure application logging with a single stream handler."""
    logger = logging.getLogger("automation_gateway")
    logger.setLevel(logging.getLevelName(level.upper()))
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s: %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
