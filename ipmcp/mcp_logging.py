import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def configure_logging(debug: bool = False, default_level: int = logging.INFO) -> logging.Logger:
    """Send package logs to stderr; stdout carries the stdio transport and CLI output."""
    root = logging.getLogger("ipmcp")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else default_level)
    root.propagate = False
    return root
