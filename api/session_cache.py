import threading
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")

MAX_CACHED_MESSAGES = 50


class SessionCache(Generic[T]):
    """Most recent history window served to one login session.

    ``None`` from ``get()`` means nothing is cached; an empty list is a real,
    empty window (e.g. right after a clear). Always safe to bypass.
    """

    def __init__(self, max_size: int = MAX_CACHED_MESSAGES):
        self.max_size = max_size
        self._window: Optional[List[T]] = None
        self._lock = threading.Lock()

    @property
    def is_populated(self) -> bool:
        return self._window is not None

    def get(self) -> Optional[List[T]]:
        with self._lock:
            return None if self._window is None else list(self._window)

    def replace(self, messages: List[T]) -> None:
        with self._lock:
            self._window = list(messages)[-self.max_size:]

    def extend(self, messages: List[T]) -> None:
        """Write-through for new messages; does nothing while unpopulated."""
        with self._lock:
            if self._window is None:
                return
            self._window = (self._window + list(messages))[-self.max_size:]

    def clear(self) -> None:
        with self._lock:
            self._window = []

    def invalidate(self) -> None:
        with self._lock:
            self._window = None
