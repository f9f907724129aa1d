"""
Change Feed — in-process publish/subscribe for task and group changes.

Services publish a ChangeEvent after each successful commit; the task
synchronizer and the SSE stream subscribe per topic:

    group:<id>   task added / modified / removed inside one group
    groups       group created / removed

One feed lives on the app (``app.extensions["change_feed"]``). Callbacks run
synchronously on the publishing thread, in publish order. A callback that
raises is logged and detached; the remaining subscribers still get the event.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field

from flask import current_app

logger = logging.getLogger(__name__)

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"
EVENT_KINDS = (ADDED, MODIFIED, REMOVED)

GROUPS_TOPIC = "groups"


def group_topic(group_id) -> str:
    return f"group:{group_id}"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    entity_id: int
    group_id: int | None = None
    data: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "kind": self.kind,
            "id": self.entity_id,
            "group_id": self.group_id,
            "data": self.data,
        }


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed, topic, key):
        self._feed = feed
        self.topic = topic
        self._key = key
        self.active = True

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        self._feed._detach(self.topic, self._key)


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._topics = {}
        self._keys = itertools.count(1)

    def subscribe(self, topic: str, callback) -> Subscription:
        with self._lock:
            key = next(self._keys)
            self._topics.setdefault(topic, {})[key] = callback
        return Subscription(self, topic, key)

    def publish(self, topic: str, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of ``topic``; returns the delivery count."""
        with self._lock:
            callbacks = list(self._topics.get(topic, {}).items())

        delivered = 0
        for key, callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception("Change feed subscriber failed on %s; detaching", topic)
                self._detach(topic, key)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    def stats(self) -> dict:
        with self._lock:
            return {
                "topics": len(self._topics),
                "subscribers": sum(len(s) for s in self._topics.values()),
            }

    def _detach(self, topic, key):
        with self._lock:
            subscribers = self._topics.get(topic)
            if subscribers is None:
                return
            subscribers.pop(key, None)
            if not subscribers:
                del self._topics[topic]


def init_change_feed(app):
    """Attach a fresh feed to ``app``."""
    app.extensions["change_feed"] = ChangeFeed()


def get_change_feed() -> ChangeFeed:
    return current_app.extensions["change_feed"]


def publish_task_event(kind, task_dict):
    """Publish a task change on its group topic."""
    event = ChangeEvent(kind, task_dict["id"], task_dict["group_id"], task_dict)
    return get_change_feed().publish(group_topic(task_dict["group_id"]), event)


def publish_group_event(kind, group_dict):
    event = ChangeEvent(kind, group_dict["id"], group_dict["id"], group_dict)
    return get_change_feed().publish(GROUPS_TOPIC, event)
