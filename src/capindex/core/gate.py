"""
Readiness gate between configuration loading and discovery.

Relationship discovery reads custom verbs, thresholds and registered
relationship types. If it starts while configuration is still loading, the
edges it produces depend on timing. Every discovery entry point awaits the
gate, and the gate only opens once configuration has fully resolved.
"""

import asyncio
from typing import Any, Callable, Optional, TypeVar

from capindex.core.exceptions import ConfigurationError
from capindex.core.logging import logger

T = TypeVar("T")


class ReadinessGate:
    """One-shot latch: closed until configuration resolves, then open forever."""

    def __init__(self, name: str = "configuration") -> None:
        self.name = name
        self._event = asyncio.Event()
        self._error: Optional[BaseException] = None

    @property
    def is_open(self) -> bool:
        return self._event.is_set() and self._error is None

    def open(self) -> None:
        if not self._event.is_set():
            logger.debug("Readiness gate opened", gate=self.name)
        self._event.set()

    def fail(self, error: BaseException) -> None:
        """Resolve the gate with an error; every waiter re-raises it."""
        self._error = error
        self._event.set()
        logger.error("Readiness gate failed", gate=self.name, error=str(error))

    async def resolve(self, loader: Callable[[], T]) -> T:
        """
        Run a blocking loader in a worker thread and open the gate when it returns.

        If the loader raises, the gate is failed and the exception propagates.
        """
        try:
            result = await asyncio.to_thread(loader)
        except Exception as e:
            self.fail(e)
            raise
        self.open()
        return result

    async def wait(self, timeout: Optional[float] = None) -> None:
        """
        Block until the gate resolves.

        Raises:
            ConfigurationError: timeout elapsed, or loading failed
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise ConfigurationError(
                f"{self.name} not ready after {timeout}s",
                context={"gate": self.name, "timeout": timeout},
            ) from e

        if self._error is not None:
            cause: Any = self._error
            raise ConfigurationError(
                f"{self.name} failed to load: {cause}",
                context={"gate": self.name},
                cause=cause if isinstance(cause, Exception) else None,
            )
