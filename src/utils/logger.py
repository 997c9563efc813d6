import logging
import os
from functools import lru_cache

from rich.console import Console
from rich.logging import RichHandler


class PaddedNameFormatter(logging.Formatter):
    """
    Pads logger names to the longest one seen so far, keeps messages aligned.
    """

    name_width = 14

    def format(self, record):
        PaddedNameFormatter.name_width = max(
            PaddedNameFormatter.name_width, len(record.name)
        )
        record.padded_name = record.name.center(PaddedNameFormatter.name_width)
        return super().format(record)


@lru_cache(maxsize=None)
def _console() -> Console:
    # textual owns the terminal while the app runs, so logs can go to a file
    log_file = os.getenv("KURASI_LOG_FILE")
    if log_file:
        return Console(file=open(log_file, "a", encoding="utf-8"), width=140)
    return Console(stderr=True)


def _env_log_level() -> int:
    if os.getenv("KURASI_DEBUG") or os.getenv("DEBUG"):
        return logging.DEBUG
    return logging.INFO


_log_level = _env_log_level()
_loggers: dict[str, logging.Logger] = {}


def set_log_level(level: int) -> None:
    """
    Applies the level to every logger handed out so far and to later ones.
    """
    global _log_level
    _log_level = level
    for logger in _loggers.values():
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for rich output.
    """
    logger = logging.getLogger(name or "kurasi")
    logger.setLevel(_log_level)

    if not logger.handlers:
        handler = RichHandler(
            console=_console(),
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
            log_time_format="[%X]",
        )
        handler.setFormatter(PaddedNameFormatter("[%(padded_name)s]  %(message)s"))
        handler.setLevel(_log_level)
        logger.addHandler(handler)

        logger.propagate = False
        logger.debug(f"Logger for '{logger.name}' initialized with RichHandler.")

    _loggers[logger.name] = logger
    return logger
