"""
Task Synchronizer — keeps an in-memory mirror of one group's tasks.

Lifecycle:

    UNSUBSCRIBED ──select_group(g)──▶ SUBSCRIBING ──snapshot loaded──▶ LIVE
         ▲                                                          │
         └──────────────────── close() / select_group(other) ◀──────┘

The feed subscription is opened *before* the snapshot is loaded; events that
arrive in between are buffered and replayed on top of the snapshot, so no
change committed during the load is lost. Replayed events older than the
snapshot row they touch are skipped.

The filter/sort helpers at the bottom are shared with task_service so the
REST listing and the live mirror order tasks identically.
"""

import logging
import threading
from datetime import date, datetime, timezone

from ompro.services.change_feed import ADDED, MODIFIED, REMOVED, group_topic
from ompro.utils.helpers import parse_dmy_date

logger = logging.getLogger(__name__)

UNSUBSCRIBED = "unsubscribed"
SUBSCRIBING = "subscribing"
LIVE = "live"


class TaskSynchronizer:
    def __init__(self, feed, loader):
        """
        Args:
            feed: ChangeFeed to subscribe on.
            loader: callable(group_id) -> list of task dicts (the snapshot).
        """
        self._feed = feed
        self._loader = loader
        self._lock = threading.RLock()
        self._subscription = None
        self._tasks = {}
        self._pending = []
        self._listeners = []
        self.state = UNSUBSCRIBED
        self.group_id = None

    # ── Subscription lifecycle ───────────────────────────────────────────

    def select_group(self, group_id):
        if group_id is None:
            self.close()
            return

        with self._lock:
            if self.group_id == group_id and self.state == LIVE:
                return

        self.close()

        with self._lock:
            self.state = SUBSCRIBING
            self.group_id = group_id
            self._pending = []
            self._subscription = self._feed.subscribe(group_topic(group_id), self.apply)

        try:
            snapshot = self._loader(group_id)
        except Exception:
            logger.exception("Snapshot load failed for group %s", group_id)
            self.close()
            raise

        with self._lock:
            if self.group_id != group_id or self.state != SUBSCRIBING:
                return  # closed or re-targeted while loading
            self._tasks = {t["id"]: t for t in snapshot}
            buffered, self._pending = self._pending, []
            for event in buffered:
                self._apply_locked(event, replay=True)
            self.state = LIVE

        logger.debug("Synchronizer live on group %s (%d tasks, %d replayed)",
                     group_id, len(snapshot), len(buffered))

    def close(self):
        with self._lock:
            subscription, self._subscription = self._subscription, None
            self.state = UNSUBSCRIBED
            self.group_id = None
            self._tasks = {}
            self._pending = []
        if subscription is not None:
            subscription.unsubscribe()

    # ── Event handling ───────────────────────────────────────────────────

    def apply(self, event) -> bool:
        """Apply one ChangeEvent; returns True if the mirror changed."""
        with self._lock:
            if event.group_id != self.group_id:
                return False
            if self.state == SUBSCRIBING:
                self._pending.append(event)
                return False
            if self.state != LIVE:
                return False
            changed = self._apply_locked(event)
            listeners = list(self._listeners)

        if changed:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Synchronizer listener failed; removing it")
                    self.remove_listener(listener)
        return changed

    def _apply_locked(self, event, replay=False):
        if event.kind in (ADDED, MODIFIED):
            current = self._tasks.get(event.entity_id)
            if replay and current is not None and _updated_ts(current) > _updated_ts(event.data):
                return False
            self._tasks[event.entity_id] = event.data
            return True
        if event.kind == REMOVED:
            return self._tasks.pop(event.entity_id, None) is not None
        logger.warning("Ignoring change event of unknown kind %r", event.kind)
        return False

    def add_listener(self, callback):
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback):
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    # ── Derived view ─────────────────────────────────────────────────────

    def tasks(self, search=None, status=None, shift=None):
        with self._lock:
            snapshot = list(self._tasks.values())
        return filter_tasks(snapshot, search=search, status=status, shift=shift)

    def __len__(self):
        with self._lock:
            return len(self._tasks)


# ═══════════════════════════════════════════════════════════════
# Shared filter / sort helpers (task dicts)
# ═══════════════════════════════════════════════════════════════

_SEARCH_FIELDS = ("om_number", "description", "work_center")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _updated_ts(task) -> float:
    value = task.get("updated_at")
    if not value:
        return 0.0
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH).total_seconds()


def sort_key(task):
    """Earliest min_date first (unparseable last), then most recently updated."""
    min_date = parse_dmy_date(task.get("min_date"))
    return (min_date is None, min_date or date.max, -_updated_ts(task))


def matches_search(task, search) -> bool:
    needle = (search or "").strip().lower()
    if not needle:
        return True
    return any(needle in str(task.get(f) or "").lower() for f in _SEARCH_FIELDS)


def filter_tasks(tasks, search=None, status=None, shift=None):
    result = [
        t for t in tasks
        if matches_search(t, search)
        and (not status or t.get("status") == status)
        and (not shift or t.get("shift") == shift)
    ]
    result.sort(key=sort_key)
    return result
