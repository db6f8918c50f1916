"""Registry of cancellation handles for outbound sends, keyed by session id."""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

CancelHandle = Callable[[], None]


class CancelRegistry:
    """Thread-safe map from session id to the handle that aborts its send."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, CancelHandle] = {}

    def register(self, session_id: str, handle: CancelHandle) -> None:
        with self._lock:
            self._handles[session_id] = handle
        logger.info(f"Registered cancel handler for {session_id}")

    def unregister(self, session_id: str) -> None:
        with self._lock:
            self._handles.pop(session_id, None)

    def cancel(self, session_id: str) -> bool:
        """Invoke the handle registered for ``session_id``. Returns False if none."""
        with self._lock:
            handle = self._handles.get(session_id)
        if handle is None:
            return False
        logger.info(f"Cancelling send for {session_id}")
        handle()
        return True

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._handles

    def cancel_all(self) -> bool:
        """Invoke every registered handle. Returns False if there were none."""
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            handle()
        return bool(handles)
