"""
Simple asynchronous logging for capindex.
"""

import os
import time
import yaml
from pathlib import Path
from typing import Optional
from contextlib import contextmanager
from loguru import logger as loguru_logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[component]} | {message}"


class AsyncLogger:
    """
    Asynchronous logger with a flat format.

    Format: timestamp | level | component | message
    Context is passed as keyword arguments and lands in the record's extra.
    """

    # Single file sink shared by every instance
    _handler_id: Optional[int] = None
    _handler_path: Optional[Path] = None

    def __init__(self, component: str, debug_mode: bool = False):
        self.component = component
        self.debug_mode = debug_mode

    @classmethod
    def configure_file_sink(cls, path: Optional[Path], level: str = "INFO") -> None:
        """
        Attach (or move) the shared rotating file sink.

        Passing None removes the sink. Calling twice with the same path is a no-op.
        """
        if path is not None:
            path = Path(path)
        if cls._handler_id is not None:
            if path == cls._handler_path:
                return
            loguru_logger.remove(cls._handler_id)
            cls._handler_id = None
            cls._handler_path = None

        if path is None:
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        cls._handler_id = loguru_logger.add(
            str(path),
            format=LOG_FORMAT,
            level=level.upper(),
            rotation="10 MB",
            compression="zip",
            enqueue=True,
        )
        cls._handler_path = path

    def log(self, level: str, message: str, **context):
        loguru_logger.bind(component=self.component).log(level, message, **context)

    def debug(self, message: str, **context):
        """Log at DEBUG level."""
        self.log("DEBUG", message, **context)

    def info(self, message: str, **context):
        """Log at INFO level."""
        self.log("INFO", message, **context)

    def warning(self, message: str, **context):
        """Log at WARNING level."""
        self.log("WARNING", message, **context)

    def error(self, message: str, include_trace: Optional[bool] = None, **context):
        """
        Log at ERROR level with an optional stack trace.

        Args:
            message: Error message
            include_trace: Include the current traceback (None = follow debug_mode)
            **context: Additional context
        """
        should_include_trace = include_trace if include_trace is not None else self.debug_mode

        if should_include_trace:
            import traceback

            context["stack_trace"] = traceback.format_exc()

        self.log("ERROR", message, **context)


class PerformanceLogger:
    """
    Logger for timing measurements.
    """

    def __init__(self):
        self.logger = AsyncLogger("performance")

    @contextmanager
    def measure(self, operation: str, **context):
        """
        Context manager that logs how long the wrapped block took.

        Usage:
        ```
        with perf_logger.measure("similarity_pass", elements=120):
            await engine.rescore_all(index)
        ```
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            self.logger.info(
                "Operation completed", operation=operation, duration_ms=duration * 1000, **context
            )


def _get_debug_mode() -> bool:
    """Read debug_mode from .capindex.yaml or the environment."""
    config_path = Path(".capindex.yaml")
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
            if isinstance(config, dict):
                return bool(config.get("logging", {}).get("debug_mode", False))
        except (OSError, yaml.YAMLError, AttributeError):
            # Settings reports unreadable config files; logging must not fail on import
            pass

    return os.getenv("CAPINDEX_DEBUG", "false").lower() == "true"


logger = AsyncLogger("capindex", debug_mode=_get_debug_mode())

_env_log_file = os.getenv("CAPINDEX_LOG_FILE")
if _env_log_file:
    AsyncLogger.configure_file_sink(Path(_env_log_file))
