"""Structured channel for soft failures (degradations).

Attribute extraction and reranking failures never abort a request. Instead
of only logging them, the pipeline emits a ``DegradationEvent`` that callers
can subscribe to or read back from the recent-events buffer.
"""

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List

from .logging import RetrievalLoggerMixin

STAGE_ATTRIBUTE_EXTRACTION = "attribute_extraction"
STAGE_RERANK = "rerank"


@dataclass(frozen=True)
class DegradationEvent:
    """A soft failure observed while serving a request."""

    stage: str
    error_type: str
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exception(cls, stage: str, error: BaseException) -> "DegradationEvent":
        message = getattr(error, "message", None) or str(error)
        return cls(stage=stage, error_type=type(error).__name__, message=message)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


EventListener = Callable[[DegradationEvent], None]


class EventChannel(RetrievalLoggerMixin):
    """Fan-out of degradation events to subscribers, plus a bounded history."""

    def __init__(self, history_size: int = 100):
        self._listeners: List[EventListener] = []
        self._recent: Deque[DegradationEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener and return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: DegradationEvent) -> None:
        self._recent.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Degradation listener failed: {e}", exc_info=True)

    def recent(self) -> List[DegradationEvent]:
        return list(self._recent)
