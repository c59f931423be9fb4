"""
Process-wide registry of expensive model handles.

Models are constructed lazily on first use and then shared read-only by
every request. Construction is single-flight: when several threads ask for
the same key at once, one of them runs the factory and the others wait for
its result.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Thread-safe, single-flight cache keyed by model identifier."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, Future] = {}

    def get(self, key: str, factory: Callable[[], Any]) -> Any:
        """
        Return the model for key, constructing it with factory if needed.

        Args:
            key: Model identifier
            factory: Zero-argument callable that builds the model

        Returns:
            The shared model instance

        Raises:
            Whatever the factory raised, to every caller waiting on that attempt
        """
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if owner:
            logger.info(f"Loading model '{key}'...")
            try:
                model = factory()
            except BaseException as e:
                # Evict so that a later request can retry the load
                with self._lock:
                    if self._entries.get(key) is future:
                        del self._entries[key]
                future.set_exception(e)
                logger.error(f"Failed to load model '{key}': {e}")
                raise
            future.set_result(model)
            logger.info(f"Model '{key}' loaded successfully")

        return future.result()

    def contains(self, key: str) -> bool:
        with self._lock:
            future = self._entries.get(key)
        return future is not None and future.done() and future.exception() is None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


default_registry = ModelRegistry()
