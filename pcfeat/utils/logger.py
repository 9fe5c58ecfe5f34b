# pcfeat/utils/logger.py
"""
Logging helpers built on top of loguru.

Importing any pcfeat module only binds loggers; the handlers of the host
application are left alone and receive pcfeat records like any other.
``Logger.configure()`` is the explicit opt-in for the project console sink.
"""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, TypeVar, cast

from loguru import logger as _logger
from loguru._logger import Logger as LoguruLogger
from tqdm.auto import tqdm

T = TypeVar("T")

MODULE_W = 8
ENV_LEVEL = "PCFEAT_LOG_LEVEL"


@dataclass(frozen=True)
class LoggingCfg:
    level: str = "INFO"
    log_format: str = (
        "<green>{time:HH:mm:ss.SSS}</green> "
        "<level>{level:<5.5}</level> "
        f"<cyan>{{extra[module]:>{MODULE_W}.{MODULE_W}}}</cyan> | "
        "<level>{message}</level>"
    )
    progress_bar_format: str = "{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt}"


LOGCFG = LoggingCfg()
LOG = _logger.bind(module="utils.log")


def _is_pcfeat(record: Dict[str, Any]) -> bool:
    return "module" in record["extra"]


class Logger:
    """Module-bound loggers, an opt-in console sink and tqdm progress bars."""

    _sink_ids: List[int] = []
    _lock = threading.Lock()

    @staticmethod
    def get_logger(name: str) -> LoguruLogger:
        """Loguru logger with ``name`` bound into ``extra[module]``."""
        return _logger.bind(module=name)

    @staticmethod
    def configure(level: Optional[str] = None, sink: Any = sys.stderr) -> int:
        """
        Attach the pcfeat sink (records of pcfeat modules only).

        Level resolution: argument, then ``PCFEAT_LOG_LEVEL``, then INFO.
        Calling again replaces the previous pcfeat sink; sinks added by
        anyone else are never removed. Returns the loguru handler id.
        """
        lvl = (level or os.environ.get(ENV_LEVEL, "").strip() or LOGCFG.level).upper()
        with Logger._lock:
            Logger._drop_sinks()
            sink_id = _logger.add(
                sink, level=lvl, format=LOGCFG.log_format, filter=_is_pcfeat
            )
            Logger._sink_ids.append(sink_id)
        return sink_id

    @staticmethod
    def reset() -> None:
        """Remove the sink added by ``configure()``."""
        with Logger._lock:
            Logger._drop_sinks()

    @staticmethod
    def _drop_sinks() -> None:
        for sink_id in Logger._sink_ids:
            try:
                _logger.remove(sink_id)
            except ValueError:
                # already removed by a global logger.remove()
                LOG.debug(f"[LOG] sink {sink_id} was already removed")
        Logger._sink_ids = []

    @staticmethod
    def progress(
        iterable: Iterable[T],
        desc: Optional[str] = None,
        total: Optional[int] = None,
        enabled: bool = True,
    ) -> Iterable[T]:
        """tqdm over ``iterable`` when enabled, the iterable itself otherwise."""
        if not enabled:
            return iterable
        return cast(
            Iterable[T],
            tqdm(
                iterable,
                desc=desc,
                total=total,
                leave=False,
                bar_format=LOGCFG.progress_bar_format,
            ),
        )
