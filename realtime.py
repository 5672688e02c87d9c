"""In-process change feed for the matches and tickets tables.

The store publishes one ``ChangeEvent`` per committed write. Consumers either
subscribe to a table or fold events into a list they already hold with
``apply_change``.
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    type: str
    table: str
    new: dict = None
    old: dict = None

    def to_dict(self):
        return {"type": self.type, "table": self.table, "new": self.new, "old": self.old}


def apply_change(current, event):
    """Return a new list with ``event`` folded in, matching rows by ``id``."""
    if event.type == INSERT:
        return current + [event.new]
    if event.type == UPDATE:
        return [event.new if row["id"] == event.new["id"] else row for row in current]
    if event.type == DELETE:
        return [row for row in current if row["id"] != event.old["id"]]
    return list(current)


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)

    def subscribe(self, table, callback):
        with self._lock:
            self._subscribers[table].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[table]:
                    self._subscribers[table].remove(callback)

        return unsubscribe

    def publish(self, event):
        with self._lock:
            callbacks = list(self._subscribers[event.table])
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed on %s %s", event.type, event.table)

    def subscriber_count(self, table):
        with self._lock:
            return len(self._subscribers[table])
