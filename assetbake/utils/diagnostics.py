"""
Diagnostics
Logging setup shared by the CLI and the pipeline
"""

import logging
import sys

LOG_FORMAT = "[%(levelname)s] %(message)s"


def configure_logging(verbose: bool = False, stream=None) -> logging.Logger:
    """Send the package's log records to stderr as ``[LEVEL] message`` lines."""
    logger = logging.getLogger("assetbake")
    for handler in list(logger.handlers):
        if getattr(handler, "_assetbake_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._assetbake_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger
