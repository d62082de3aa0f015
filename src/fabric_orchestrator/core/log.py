"""
Logging setup.

Modules log through logging.getLogger(__name__), so everything sits below the
package logger configured here. Library use without setup_logging stays
silent apart from warnings, which is the standard library default.
"""

from __future__ import annotations

import logging
from typing import Optional

PACKAGE_LOGGER = "fabric_orchestrator"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    - level: threshold for the stderr handler
    - log_file: optional file that always receives debug level records
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sh = logging.StreamHandler()
    sh.setLevel(getattr(logging, level.upper(), logging.INFO))
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, mode="a")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
