"""
Logging Setup
=============
loguru sink configuration for the CLI.

Library modules log through `from loguru import logger` and never configure
sinks themselves; only entry points call configure_logging.
"""

from __future__ import annotations

import sys
from contextlib import suppress
from pathlib import Path
from typing import List, Optional

from loguru import logger

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"

_HANDLER_IDS: List[int] = []


def configure_logging(level: str = "INFO", log_file: Optional[str | Path] = None) -> None:
    """Route log lines to stderr (and optionally a rotating file).

    Calling this again replaces the sinks installed by the previous call.
    """
    # loguru's default stderr sink has id 0
    with suppress(ValueError):
        logger.remove(0)

    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    _HANDLER_IDS.append(
        logger.add(
            sys.stderr,
            level=level.upper(),
            format=CONSOLE_FORMAT,
            colorize=False,
            backtrace=False,
            diagnose=False,
        )
    )

    if log_file:
        output_path = Path(log_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLER_IDS.append(
            logger.add(
                output_path,
                level=level.upper(),
                format=CONSOLE_FORMAT,
                rotation="10 MB",
                retention="1 week",
                backtrace=False,
                diagnose=False,
            )
        )
