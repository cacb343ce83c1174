from __future__ import annotations

import logging
import sys

from .config import log_level_name

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Native messaging requires strict stdout framing. Logs always go to stderr.
    logging.basicConfig(
        level=getattr(logging, level or log_level_name(), logging.INFO),
        format=_FORMAT,
        stream=sys.stderr,
        force=True,
    )
