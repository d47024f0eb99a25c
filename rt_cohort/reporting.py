"""
Logging and execution time reports for the cohort Rt pipeline.

All modules log through children of the project logger:
```python
from rt_cohort.reporting import get_rt_cohort_logger
_LOGGER = get_rt_cohort_logger().getChild(__name__)
```
"""
import functools
import logging
import sys
import time
from collections import OrderedDict

from colorama import Fore, Style


LOGGER_NAME = "rt_cohort"
SUCCESS = 25  # Between INFO and WARNING
logging.addLevelName(SUCCESS, "SUCCESS")

_LEVEL_COLORS = {
    logging.DEBUG: Style.DIM,
    logging.INFO: "",
    SUCCESS: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


class ColoredLevelFormatter(logging.Formatter):
    """Formatter that paints the level name according to its severity."""

    def format(self, record):
        color = _LEVEL_COLORS.get(record.levelno, "")
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def get_rt_cohort_logger():
    return logging.getLogger(LOGGER_NAME)


def config_rt_cohort_logger(level=logging.INFO, stream=None):
    """Configures the project logger with a single colored stream
    handler. Calling it again replaces the previous handler.

    Parameters
    ----------
    level : Union[int, str]
        Logging level, either as an int or as a name accepted by the
        `logging` library (e.g. "DEBUG", "SUCCESS").
    stream :
        Stream for the handler. Defaults to sys.stderr.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    logger = get_rt_cohort_logger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_rt_cohort_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ColoredLevelFormatter(
        "[%(levelname)s] %(name)s: %(message)s"))
    handler._rt_cohort_handler = True
    logger.addHandler(handler)

    return logger


class ExecTimeTracker:
    """Accumulates wall-clock execution times of tracked functions,
    keyed by function name.
    """

    def __init__(self):
        self._times = OrderedDict()

    def track(self, name=None):
        """Decorator that adds the execution time of each call to the
        tracker.
        """
        def decorator(function):
            key = name or function.__name__

            @functools.wraps(function)
            def wrapper(*args, **kwargs):
                xt0 = time.perf_counter()
                try:
                    return function(*args, **kwargs)
                finally:
                    self._times[key] = (
                        self._times.get(key, 0.) + time.perf_counter() - xt0)

            return wrapper

        return decorator

    def get_dict(self):
        return OrderedDict(self._times)

    def clear(self):
        self._times.clear()


_MAIN_XTT = ExecTimeTracker()


def get_main_exectime_tracker():
    return _MAIN_XTT
