"""flownote.sync.queue

Single-writer pass queue.

Every graph-mutating pass runs through `PassQueue.run`. While a pass is
running, further submissions (typically store events raised by the pass's own
commit) are queued and drained in FIFO order once it finishes. Pending passes
submitted under the same coalescing key run once.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Deque, Optional, Tuple

from ..logging import get_logger

logger = get_logger(__name__)


class PassQueue:
    def __init__(self) -> None:
        self._pending: Deque[Tuple[Optional[str], Callable[[], Any]]] = deque()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def __len__(self) -> int:
        return len(self._pending)

    def run(self, fn: Callable[[], Any], *, key: Optional[str] = None) -> Any:
        """Run `fn` now, or queue it if a pass is already running.

        Returns `fn`'s result when it ran immediately, None when queued.
        Errors raised by queued passes are logged; errors of the immediate
        pass propagate after the queue is drained.
        """
        if self._running:
            if key is not None and any(k == key for k, _ in self._pending):
                return None
            self._pending.append((key, fn))
            return None

        self._running = True
        try:
            result = fn()
        finally:
            try:
                self._drain()
            finally:
                self._running = False
        return result

    def _drain(self) -> None:
        while self._pending:
            key, fn = self._pending.popleft()
            try:
                fn()
            except Exception as e:
                logger.exception("Queued pass failed", key=key or "-", error=str(e))
