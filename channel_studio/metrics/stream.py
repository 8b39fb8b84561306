"""
Live status stream - per-message status events pushed by the engine.

The engine emits one event per message state change. MetricsAggregator turns
the raw events into per-channel counters plus a short history of recent updates.
"""

import json
import logging
from collections import deque
from enum import Enum
from typing import Optional, Dict, List, Any, Deque, Union

from pydantic import BaseModel, ValidationError

from channel_studio.config.settings import settings

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    ERROR = "ERROR"
    FILTERED = "FILTERED"


class MetricUpdate(BaseModel):
    """One status event from the engine."""
    channel_id: str
    message_id: Optional[str] = None
    status: MessageStatus
    timestamp: str


class ChannelStats(BaseModel):
    processed: int = 0
    sent: int = 0
    errors: int = 0
    filtered: int = 0


_COUNTER_FOR = {
    MessageStatus.PROCESSING: "processed",
    MessageStatus.SENT: "sent",
    MessageStatus.ERROR: "errors",
    MessageStatus.FILTERED: "filtered",
}


class MetricsAggregator:
    """Counts status events per channel and keeps the most recent ones."""

    def __init__(self, history_size: Optional[int] = None):
        self._stats: Dict[str, ChannelStats] = {}
        self._recent: Deque[MetricUpdate] = deque(maxlen=history_size or settings.metrics_history_size)

    def ingest(self, event: Union[str, bytes, Dict[str, Any], MetricUpdate]) -> Optional[MetricUpdate]:
        """Record one event. Malformed events are logged and skipped."""
        try:
            if isinstance(event, MetricUpdate):
                update = event
            elif isinstance(event, (str, bytes)):
                update = MetricUpdate.model_validate(json.loads(event))
            else:
                update = MetricUpdate.model_validate(event)
        except (ValueError, ValidationError) as e:
            logger.warning(f"[METRICS] Skipping malformed status event: {e}")
            return None

        stats = self._stats.setdefault(update.channel_id, ChannelStats())
        counter = _COUNTER_FOR[update.status]
        setattr(stats, counter, getattr(stats, counter) + 1)
        self._recent.appendleft(update)
        return update

    def stats(self, channel_id: str) -> ChannelStats:
        return self._stats.get(channel_id, ChannelStats()).model_copy()

    def all_stats(self) -> Dict[str, ChannelStats]:
        return {k: v.model_copy() for k, v in self._stats.items()}

    def recent(self) -> List[MetricUpdate]:
        """Most recent first."""
        return list(self._recent)

    def clear(self) -> None:
        self._stats.clear()
        self._recent.clear()
