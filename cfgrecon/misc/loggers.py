from __future__ import annotations
import logging
import traceback
import zlib

from .testing import is_testing
from ..utils.formatting import ansi_color, ansi_color_enabled


_LEVEL_COLORS = (
    (logging.CRITICAL, "bright_red"),
    (logging.ERROR, "red"),
    (logging.WARNING, "yellow"),
    (logging.INFO, "blue"),
)

_NAME_COLORS = ("green", "magenta", "cyan", "gray")


class Loggers:
    """
    Aggregates the loggers of cfgrecon and of the libraries it drives (pyvex, cle, archinfo).

    Loggers are reachable as attributes with dots replaced by underscores, e.g. ``loggers.cfgrecon_analyses_discovery``.
    """

    __slots__ = (
        "default_level",
        "_loggers",
        "handler",
    )

    IN_SCOPE = ("cfgrecon", "cle", "pyvex", "archinfo")

    def __init__(self, default_level=logging.WARNING):
        self.default_level = default_level
        self._loggers = {}
        self.load_all_loggers()

        self.handler = logging.StreamHandler()
        self.handler.setFormatter(CuteFormatter(ansi_color_enabled))

        if not is_testing and len(logging.root.handlers) == 0:
            self.enable_root_logger()
            logging.root.setLevel(self.default_level)

    def load_all_loggers(self):
        for name, logger in logging.Logger.manager.loggerDict.items():
            if any(name.startswith(x + ".") or name == x for x in self.IN_SCOPE):
                self._loggers[name] = logger

    def __getattr__(self, k):
        real_k = k.replace("_", ".")
        if real_k in self._loggers:
            return self._loggers[real_k]
        raise AttributeError(k)

    def __dir__(self):
        return list(super().__dir__()) + list(self._loggers.keys())

    def enable_root_logger(self):
        logging.root.addHandler(self.handler)

    def disable_root_logger(self):
        logging.root.removeHandler(self.handler)

    def set_level(self, level, scope: str = "cfgrecon"):
        """
        Set the level of the given scope's logger. Child loggers inherit it unless they override it.
        """
        logging.getLogger(scope).setLevel(level)


class CuteFormatter(logging.Formatter):
    """
    A log formatter that aligns level and logger name columns, with optional colors.
    """

    __slots__ = ("_should_color",)

    def __init__(self, should_color: bool):
        super().__init__()
        self._should_color: bool = should_color

    def format(self, record: logging.LogRecord):
        name: str = record.name
        level: str = record.levelname
        message: str = record.getMessage()
        name_len = len(name)
        lvl_len = len(level)
        if self._should_color:
            for threshold, level_color in _LEVEL_COLORS:
                if record.levelno >= threshold:
                    level = ansi_color(level, level_color)
                    break
            name_color = _NAME_COLORS[zlib.adler32(record.name.encode()) % len(_NAME_COLORS)]
            name = ansi_color(name, name_color)
        name = name.ljust(14 + len(name) - name_len)
        level = level.ljust(8 + len(level) - lvl_len)
        body = f"{level} | {self.formatTime(record, self.datefmt) : <23} | {name} | {message}"
        if record.exc_info:
            body += "\n" + "".join(traceback.format_exception(*record.exc_info))[:-1]
        return body
