"""
Logging helpers for peerlink.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
ENV_LEVEL_VAR = "PEERLINK_LOG_LEVEL"

# Third-party loggers that flood INFO during ICE checks and HTTP polling.
NOISY_LOGGERS = ("aioice", "aiortc", "httpx", "httpcore")


def resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.environ.get(ENV_LEVEL_VAR, logging.INFO)
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Union[int, str, None] = None, format: Optional[str] = None) -> None:
    """
    Configure the root logger once and quiet the noisy third-party loggers.
    """

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=resolve_level(level),
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
