# votee9ja/realtime.py

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass

# Push notifications for result consumers. Delivery is best-effort and
# carries no vote contents: subscribers learn that an election's tally
# moved and re-fetch the published aggregates themselves.

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultsEvent:
    election_id: str
    position_id: str
    event: str = "vote_cast"


class ResultsChannel:
    def __init__(self):
        self._subscribers = defaultdict(list)  # election_id -> [callback]
        self._lock = threading.Lock()

    def subscribe(self, election_id, callback):
        """Register ``callback`` for ``election_id``; returns an unsubscribe function."""
        with self._lock:
            self._subscribers[election_id].append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(election_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(election_id, None)

        return unsubscribe

    def subscriber_count(self, election_id):
        with self._lock:
            return len(self._subscribers.get(election_id, []))

    def publish(self, event: ResultsEvent):
        with self._lock:
            callbacks = list(self._subscribers.get(event.election_id, []))
        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                # A failing consumer must not affect the write that triggered it.
                logger.exception("Results subscriber failed for election %s", event.election_id)
        return delivered
