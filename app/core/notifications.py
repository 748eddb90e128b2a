"""
Change Notification Bus

Every committed insert/update/delete on a Project row is turned into a
change event and pushed to the subscribers whose predicate matches it.
Nothing writes to the bus directly: events come from SQLAlchemy mapper
hooks, are held on the session until the transaction commits and are
dropped on rollback, so observers only ever see committed state.

Event shape:
    {"event": "INSERT" | "UPDATE" | "DELETE", "table": "projects",
     "new": {...} | None, "old": {...} | None, "commit_timestamp": "..."}

Within one process events are dispatched directly. When Redis fan-out is
enabled, events are published on the `project_changes` channel instead
and a RedisChangeRelay in each API process hands them to local
subscribers, so renders running in worker processes reach every client.
"""

import json
import logging
import queue
import threading
from datetime import date, datetime
from typing import Callable, Dict, Iterable, Optional, Union

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from app.core.redis import RedisOps, get_redis
from app.core.timezone import get_utc_now
from app.models.project import Project

logger = logging.getLogger(__name__)

CHANNEL = "project_changes"
CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")
PENDING_KEY = "pending_project_changes"

Predicate = Union[Dict[str, object], Callable[[dict], bool], None]


def _jsonable(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def project_to_row(state_dict: dict) -> dict:
    return {
        column.key: _jsonable(state_dict.get(column.key))
        for column in Project.__table__.columns
    }


class Subscription:
    """One observer's interest in a subset of project changes, with its own FIFO."""

    def __init__(self, name: str, predicate: Predicate = None, events: Iterable[str] = ("*",)):
        self.name = name
        self.events = {e.upper() for e in events}
        self._predicate = self._build_predicate(predicate)
        self._queue: "queue.Queue[dict]" = queue.Queue()

    @staticmethod
    def _build_predicate(predicate: Predicate) -> Callable[[dict], bool]:
        if predicate is None:
            return lambda row: True
        if callable(predicate):
            return predicate
        filters = dict(predicate)
        return lambda row: all(row.get(key) == value for key, value in filters.items())

    def matches(self, change: dict) -> bool:
        if "*" not in self.events and change["event"] not in self.events:
            return False
        row = change["old"] if change["event"] == "DELETE" else change["new"]
        return bool(row) and self._predicate(row)

    def deliver(self, change: dict) -> None:
        self._queue.put(change)

    def next_event(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next change in delivery order, or None if nothing arrived within `timeout`."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list:
        changes = []
        while True:
            try:
                changes.append(self._queue.get_nowait())
            except queue.Empty:
                return changes


class ChangeBus:
    def __init__(self):
        self._subs: Dict[str, Subscription] = {}
        self._lock = threading.Lock()
        self.redis_fanout = False

    def subscribe(self, name: str, predicate: Predicate = None, events: Iterable[str] = ("*",)) -> Subscription:
        """Register interest. Subscribing an existing name returns the existing subscription."""
        with self._lock:
            existing = self._subs.get(name)
            if existing:
                return existing
            subscription = Subscription(name, predicate, events)
            self._subs[name] = subscription
            return subscription

    def unsubscribe(self, name: str) -> bool:
        with self._lock:
            return self._subs.pop(name, None) is not None

    def subscriptions(self) -> list:
        with self._lock:
            return list(self._subs.values())

    def dispatch(self, change: dict) -> int:
        delivered = 0
        for subscription in self.subscriptions():
            try:
                if subscription.matches(change):
                    subscription.deliver(change)
                    delivered += 1
            except Exception:
                logger.exception("Predicate for subscription %s failed", subscription.name)
        return delivered

    def publish(self, change: dict) -> None:
        if self.redis_fanout and RedisOps.publish(CHANNEL, json.dumps(change)):
            return
        if self.redis_fanout:
            logger.warning("Redis publish failed, dispatching change locally")
        self.dispatch(change)


bus = ChangeBus()


class RedisChangeRelay:
    """Background thread that feeds changes from the Redis channel into the local bus."""

    def __init__(self, change_bus: ChangeBus = bus, poll_seconds: float = 1.0):
        self.bus = change_bus
        self.poll_seconds = poll_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        client = get_redis()
        if not client:
            return False

        pubsub = client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(CHANNEL)
        self._thread = threading.Thread(target=self._run, args=(pubsub,), name="change-relay", daemon=True)
        self._thread.start()
        self.bus.redis_fanout = True
        return True

    def _run(self, pubsub) -> None:
        try:
            while not self._stop.is_set():
                try:
                    message = pubsub.get_message(timeout=self.poll_seconds)
                except Exception as e:
                    logger.error("Change relay read failed: %s", e)
                    self._stop.wait(self.poll_seconds)
                    continue
                if not message or message.get("type") != "message":
                    continue
                try:
                    self.bus.dispatch(json.loads(message["data"]))
                except ValueError:
                    logger.warning("Dropping malformed change message")
        finally:
            pubsub.close()

    def stop(self) -> None:
        self._stop.set()
        self.bus.redis_fanout = False
        if self._thread:
            self._thread.join(timeout=self.poll_seconds * 2)


def sse_format(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


# ── Change capture ────────────────────────────────────────────────────

def _queue_change(target: Project, change_type: str) -> None:
    session = object_session(target)
    if session is None:
        return

    state = inspect(target)
    current = project_to_row(state.dict)
    old = None

    if change_type == "UPDATE":
        changed = False
        old = dict(current)
        for column in Project.__table__.columns:
            history = state.attrs[column.key].history
            if history.has_changes():
                changed = True
                if history.deleted:
                    old[column.key] = _jsonable(history.deleted[0])
        if not changed:
            return

    change = {
        "event": change_type,
        "table": Project.__tablename__,
        "new": None if change_type == "DELETE" else current,
        "old": current if change_type == "DELETE" else old,
    }
    session.info.setdefault(PENDING_KEY, []).append(change)


@event.listens_for(Project, "after_insert")
def _project_inserted(_mapper, _connection, target):
    _queue_change(target, "INSERT")


@event.listens_for(Project, "after_update")
def _project_updated(_mapper, _connection, target):
    _queue_change(target, "UPDATE")


@event.listens_for(Project, "after_delete")
def _project_deleted(_mapper, _connection, target):
    _queue_change(target, "DELETE")


@event.listens_for(Session, "after_commit")
def _publish_committed(session):
    changes = session.info.pop(PENDING_KEY, None)
    if not changes:
        return
    committed_at = get_utc_now().isoformat()
    for change in changes:
        change["commit_timestamp"] = committed_at
        bus.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back(session):
    session.info.pop(PENDING_KEY, None)
