import logging
import sys
from typing import Optional

from dhool_access.core.config.access_settings import get_settings


class Logger:
    """Thin logger wrapper with a single console handler per name."""

    def __init__(self, name: str = "dhool_access", level: Optional[str] = None):
        self.name = name
        self._logger = logging.getLogger(name)

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self._logger.addHandler(handler)
        self._logger.setLevel((level or get_settings().log_level).upper())

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        """Log at ERROR level with the active traceback attached"""
        self._logger.exception(msg, *args, **kwargs)
