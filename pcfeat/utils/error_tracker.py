"""Exception types and centralized error reporting."""

from __future__ import annotations

import sys
import traceback
from typing import Callable, Optional

from .logger import Logger


class FeatureError(Exception):
    """Base class for feature estimation errors."""


class ConfigurationError(FeatureError):
    """Raised by compute() when the estimator is not fully configured."""


class CloudError(FeatureError):
    """Raised on malformed point cloud data (shape or length mismatch)."""


class SearchError(FeatureError):
    """Raised when a neighbor search is queried before being built."""


class ErrorTracker:
    """Routes tracebacks into the project log."""

    logger = Logger.get_logger("utils.err")
    _installed = False
    _orig_hook: Optional[Callable[..., None]] = None

    @classmethod
    def install_excepthook(cls) -> None:
        """Log unhandled exceptions through the project logger."""
        if cls._installed:
            return

        cls._orig_hook = sys.excepthook

        def _hook(exc_type, exc, tb) -> None:
            message = "".join(traceback.format_exception(exc_type, exc, tb))
            cls.logger.error(f"Unhandled exception:\n{message}")
            if cls._orig_hook:
                cls._orig_hook(exc_type, exc, tb)

        sys.excepthook = _hook
        cls._installed = True
        cls.logger.debug("Global exception hook installed")

    @classmethod
    def uninstall_excepthook(cls) -> None:
        if not cls._installed:
            return
        sys.excepthook = cls._orig_hook or sys.__excepthook__
        cls._installed = False

    @classmethod
    def report(cls, exc: BaseException, context: str = "") -> None:
        """Log an exception with full traceback to logger only."""
        tb = exc.__traceback__
        if tb:
            formatted = "".join(traceback.format_exception(type(exc), exc, tb))
        else:
            stack = "".join(traceback.format_stack())
            formatted = f"{type(exc).__name__}: {exc}\nTraceback (most recent call last):\n{stack}"
        prefix = f"[{context}] " if context else ""
        cls.logger.error(f"{prefix}{formatted}")
