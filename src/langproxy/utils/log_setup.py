from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Send logs to stderr.

    The root logger is configured only once; level comes from the argument,
    then LANGPROXY_LOG_LEVEL, then INFO.
    """
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        stream=sys.stderr,
        level=(level or os.environ.get("LANGPROXY_LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
    )
