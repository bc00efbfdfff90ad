"""
Logger module for blockport.

A thin wrapper over the standard ``logging`` package that accepts structured
context through a ``data`` mapping, so call sites read the same everywhere:

    logger.warning("Update failed", data={"source_id": ctx.source_id})
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from blockport.config import Settings

_ROOT_NAME = "blockport"
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Logger:
    """Structured logger bound to a namespace."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        self._logger = logging.getLogger(namespace)

    def _emit(
        self,
        level: int,
        message: str,
        data: dict[str, Any] | None,
        exc_info: bool = False,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if data:
            rendered = " ".join(f"{key}={value!r}" for key, value in data.items())
            message = f"{message} [{rendered}]"
        self._logger.log(level, message, exc_info=exc_info, stacklevel=3)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._emit(logging.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._emit(logging.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._emit(logging.WARNING, message, data)

    def error(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._emit(logging.ERROR, message, data)

    def exception(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log at error level with the active exception's traceback."""
        self._emit(logging.ERROR, message, data, exc_info=True)


_loggers: dict[str, Logger] = {}
_lock = threading.Lock()


def get_logger(namespace: str) -> Logger:
    """Get a logger instance for a given namespace, creating it if needed."""
    with _lock:
        if namespace not in _loggers:
            _loggers[namespace] = Logger(namespace)
        return _loggers[namespace]


def configure_logging(settings: "Settings") -> None:
    """Apply the configured level to the package root logger.

    Handlers are only attached once, so repeated calls just adjust the level.
    """
    root = logging.getLogger(_ROOT_NAME)
    root.setLevel(_LEVELS.get(settings.logger.level, logging.WARNING))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
