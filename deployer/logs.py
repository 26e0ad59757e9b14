"""Logging setup for command line entry points.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by whatever runs the deployer.
"""

import logging
import sys


def configure_logging(level: int = logging.INFO) -> None:
    """Send log records to stderr with a timestamped format."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # AWS SDK debug output drowns out the pipeline's own records
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
