import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "ci_report"


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a stderr handler to the ``ci_report`` logger and return it.

    stdout carries the JSON report, so every log record goes to stderr.
    Only the package logger is configured; HTTP chatter from ``urllib3`` is
    shown with ``--verbose`` only. Calling this again replaces the handler.
    """
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger = logging.getLogger(PACKAGE_LOGGER)
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)

    logging.getLogger("urllib3").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
