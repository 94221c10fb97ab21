"""Process-wide logging setup shared by the API and the Celery workers."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from eventmedia.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None, logger: Optional[logging.Logger] = None) -> None:
    """
    Attach a stdout handler with the project format.

    Celery passes its own logger through the `after_setup_logger` signal;
    the API calls this without arguments and configures the root logger.
    """
    global _configured

    target = logger or logging.getLogger()
    if logger is None and _configured:
        return

    level_name = (level or get_settings().LOG_LEVEL or "INFO").upper()
    target.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.handlers = [handler]

    # boto and pymongo are chatty at INFO.
    for noisy in ("botocore", "boto3", "urllib3", "pymongo"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if logger is None:
        _configured = True


def short_id(value: Optional[str]) -> str:
    """Truncate an identifier for log lines."""
    if not value:
        return "-"
    return value if len(value) <= 8 else value[:8] + "..."
