from __future__ import annotations

import logging
import re
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_FILENAME = "photodrop.log"

# Everything after "?" in a presigned storage URL is a bearer credential
_URL_QUERY_RE = re.compile(r"(https?://[^\s?]+)\?[^\s]+")


class RedactPresignedQueryFilter(logging.Filter):
    """
    Strips query strings from URLs in log messages so presigned upload targets
    never land in the terminal or photodrop.log with their signatures.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _URL_QUERY_RE.sub(r"\1", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(*, log_dir: Path | None = None, verbose: bool = True) -> logging.Logger:
    """
    Set up logging for photodrop.

    Args:
        log_dir: Optional directory to write photodrop.log to
        verbose: If True (default), show DEBUG level logs. If False, only show INFO and above.
    """
    logger = logging.getLogger("photodrop")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    ch.addFilter(RedactPresignedQueryFilter())
    logger.addHandler(ch)

    if log_dir is not None:
        attach_session_logfile(logger, log_dir)

    # httpx logs every request line (full presigned URL included) at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.propagate = False
    return logger


def attach_session_logfile(logger: logging.Logger, log_dir: Path) -> None:
    """
    Adds a logfile handler if one is not already present.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    logfile = log_dir / LOG_FILENAME
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == logfile.resolve():
            return

    fh = logging.FileHandler(logfile)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    fh.addFilter(RedactPresignedQueryFilter())
    logger.addHandler(fh)
