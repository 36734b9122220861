from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from offline_agent.config.models import LoggingSettings

# Per-request access lines from aiohttp are only useful when debugging the proxy.
_CHATTY_LOGGERS = ("aiohttp.access", "aiohttp.client")


def _resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _build_file_handler(settings: LoggingSettings, formatter: logging.Formatter) -> Optional[logging.Handler]:
    file_path = settings.file.path.strip()
    if not file_path:
        return None

    file_path_obj = Path(file_path)
    file_path_obj.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(file_path_obj),
        when="midnight",
        interval=1,
        backupCount=settings.file.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setFormatter(formatter)
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Initialize application logging.

    Logs go to stderr and, when a file path is configured, to a daily rotated
    file. Calling it again replaces the handlers installed by the previous call.
    """

    level = _resolve_level(settings.level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        fmt="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if level > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    try:
        file_handler = _build_file_handler(settings, formatter)
    except OSError:
        root_logger.error(
            "File logging handler failed to initialize path=%s",
            settings.file.path,
            exc_info=True,
        )
        return
    if file_handler is not None:
        root_logger.addHandler(file_handler)


__all__ = ["init_logging"]
