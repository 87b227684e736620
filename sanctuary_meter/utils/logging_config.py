"""
Console logging for the command line driver.

Library modules only create `logging.getLogger(__name__)`; the handler is
attached here, once, by the entry point.
"""

import logging

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(level: str | int = logging.INFO) -> None:
    # Format: Timestamp | Level | Component | Message
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.addHandler(console_handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
