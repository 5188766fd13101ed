"""
Knowledge gap bus: explicit publish/subscribe boundary between the metabolism
pipeline and components that follow up on open questions.
"""

import threading
from typing import Callable, List, Sequence

from ..models.core import KnowledgeGap
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

GapListener = Callable[[List[KnowledgeGap], str], None]


class KnowledgeGapBus:
    """Synchronous fan-out of knowledge gaps to registered listeners.

    A listener that raises is logged and skipped; the others still run.
    """

    def __init__(self):
        self._listeners: List[GapListener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: GapListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, gaps: Sequence[KnowledgeGap], agent_id: str) -> int:
        """Deliver `gaps` to every listener.

        Returns:
            Number of listeners that accepted the gaps without raising
        """
        with self._lock:
            listeners = list(self._listeners)

        delivered = 0
        for listener in listeners:
            try:
                listener(list(gaps), agent_id)
                delivered += 1
            except Exception as e:
                logger.warning(f'[{agent_id}] Gap listener {getattr(listener, "__name__", listener)!r} failed: {e}')
        return delivered
