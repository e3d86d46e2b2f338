"""Logging setup for SLURM Manager."""

import logging
import sys
from typing import Optional


def setup_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    date_format: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level (default: INFO)
        format_string: Custom format string (default: timestamp + level + logger + message)
        date_format: Custom date format (default: ISO-like)
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if date_format is None:
        date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=date_format,
        stream=sys.stderr,
        force=True,
    )

    # Flask's request log is noisy with the UI polling /api/jobs
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
