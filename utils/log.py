# Copyright (C) 2026 grodz
#
# This file is part of Tempo.
#
# Tempo is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Logging setup.

Everything logs through loguru. discord.py and mafic use the standard
logging module, so their records are forwarded with InterceptHandler.

Verbosity (settings.yaml logging.level, LOG_LEVEL env var wins):
    minimal - startup, lavalink version and problems only (NOTICE and up)
    verbose - plus what the bot is doing: joins, tracks, skips (INFO)
    debug   - everything, including stale signal and timer bookkeeping
"""

import inspect
import logging
import sys

from loguru import logger

LOG_LEVELS = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <6}</level> | "
    "<cyan>{extra[guild]}</cyan> | <level>{message}</level>"
)

# Third-party loggers that are noisy at INFO
QUIET_LIBRARIES = ("discord.gateway", "discord.voice_state", "discord.player", "mafic")


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports it
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _ensure_notice_level() -> None:
    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=25, color="<blue><bold>")


def setup_logging(level: str = "verbose") -> str:
    """Replace loguru's default sink and route stdlib logging into it.

    Args:
        level: "minimal", "verbose", "debug", or a loguru level name

    Returns:
        The loguru level name in effect
    """
    _ensure_notice_level()
    resolved = LOG_LEVELS.get(str(level).lower(), str(level).upper())
    try:
        logger.level(resolved)
    except ValueError:
        resolved = "INFO"

    logger.remove()
    logger.configure(extra={"guild": "-"})
    logger.add(sys.stderr, level=resolved, format=LOG_FORMAT, colorize=True, enqueue=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    if resolved != "DEBUG":
        for name in QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)

    return resolved
