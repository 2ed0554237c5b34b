"""
Realtime Change Feed.

In-process hub that publishes row-level INSERT / UPDATE / DELETE events for
watched tables after the writing transaction commits. Rolled-back work is
never published.

Events are collected from SQLAlchemy ``after_flush`` and delivered from
``after_commit``. Bulk ``Query.update()`` / ``Query.delete()`` bypass the
flush and are therefore not seen; services use per-row ORM writes on
watched tables.

Callbacks run synchronously in the committing thread, after the commit.
They must not use the committing session. A callback that raises is
logged and skipped; the writer never sees the error.

Usage:
    feed = current_app.extensions["change_feed"]

    with feed.subscribe("tasks", on_change, filter={"id": task_id}) as sub:
        ...

    state = merge_event(state, event)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy import event as _sa_event
from sqlalchemy import inspect as sa_inspect

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")

DEFAULT_WATCHED_TABLES = frozenset({
    "tasks",
    "task_assignees",
    "task_edit_requests",
    "task_progress_log",
    "task_files",
    "projects",
    "notifications",
})

_PENDING_KEY = "change_feed_pending"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change."""
    table: str
    event_type: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"table": self.table, "eventType": self.event_type, "payload": dict(self.payload)}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def row_payload(obj) -> dict:
    """Column values of a mapped object, from loaded state only (no SQL)."""
    state = sa_inspect(obj)
    loaded = state.dict
    payload = {}
    for attr in state.mapper.column_attrs:
        if attr.key in loaded:
            payload[attr.key] = _jsonable(loaded[attr.key])
    if state.identity:
        for column, value in zip(state.mapper.primary_key, state.identity):
            payload.setdefault(column.key, value)
    return payload


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``.

    ``unsubscribe()`` is idempotent; using the handle as a context manager
    releases it on every exit path.
    """

    def __init__(self, feed: ChangeFeed, table: str, callback: Callable[[ChangeEvent], Any],
                 filter: dict | None, events: tuple[str, ...]) -> None:
        self._feed = feed
        self.table = table
        self.callback = callback
        self.filter = dict(filter or {})
        self.events = events
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if not self.active or event.table != self.table or event.event_type not in self.events:
            return False
        return all(event.payload.get(k) == v for k, v in self.filter.items())

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"<Subscription {self.table} filter={self.filter} active={self.active}>"


class ChangeFeed:
    """Publish committed row changes to in-process subscribers.

    Constructed once in ``create_app()`` and stored on
    ``app.extensions["change_feed"]``.
    """

    def __init__(self, watched_tables=None) -> None:
        self.watched_tables = frozenset(watched_tables or DEFAULT_WATCHED_TABLES)
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()

    # ── Wiring ────────────────────────────────────────────────────────────

    def init_app(self, app, db) -> None:
        """Attach to the app's scoped session and register on ``app.extensions``."""
        app.extensions["change_feed"] = self
        if not getattr(db, "_change_feed_hooked", False):
            _sa_event.listen(db.session, "after_flush", _dispatch_after_flush)
            _sa_event.listen(db.session, "after_commit", _dispatch_after_commit)
            _sa_event.listen(db.session, "after_rollback", _dispatch_after_rollback)
            db._change_feed_hooked = True

    # ── Subscribers ───────────────────────────────────────────────────────

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], Any], *,
                  filter: dict | None = None, events=EVENT_TYPES) -> Subscription:
        if table not in self.watched_tables:
            raise ValueError(f"Table '{table}' is not watched by the change feed")
        events = tuple(e.upper() for e in events)
        unknown = [e for e in events if e not in EVENT_TYPES]
        if unknown:
            raise ValueError(f"Unknown event type(s): {', '.join(unknown)}")
        sub = Subscription(self, table, callback, filter, events)
        with self._lock:
            self._subscribers.append(sub)
        logger.debug("Change feed subscribe table=%s filter=%s", table, sub.filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ── Collection / publication ──────────────────────────────────────────

    def collect(self, session) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            self._collect_one(pending, obj, "INSERT")
        for obj in session.dirty:
            if session.is_modified(obj, include_collections=False):
                self._collect_one(pending, obj, "UPDATE")
        for obj in session.deleted:
            self._collect_one(pending, obj, "DELETE")

    def _collect_one(self, pending: list, obj, event_type: str) -> None:
        table = getattr(obj, "__tablename__", None)
        if table in self.watched_tables:
            pending.append(ChangeEvent(table, event_type, row_payload(obj)))

    def publish(self, event: ChangeEvent) -> int:
        """Deliver one event; returns the number of callbacks invoked."""
        with self._lock:
            targets = [s for s in self._subscribers if s.matches(event)]
        for sub in targets:
            try:
                sub.callback(event)
            except Exception:
                logger.exception("Change feed listener failed table=%s event=%s", event.table, event.event_type)
        return len(targets)

    def flush_pending(self, session) -> None:
        for evt in session.info.pop(_PENDING_KEY, []):
            self.publish(evt)

    @staticmethod
    def discard_pending(session) -> None:
        session.info.pop(_PENDING_KEY, None)


# ── Session event dispatch ───────────────────────────────────────────────────

def _current_feed() -> ChangeFeed | None:
    if not has_app_context():
        return None
    return current_app.extensions.get("change_feed")


def _dispatch_after_flush(session, flush_context) -> None:
    feed = _current_feed()
    if feed is not None:
        feed.collect(session)


def _dispatch_after_commit(session) -> None:
    feed = _current_feed()
    if feed is not None:
        feed.flush_pending(session)
    else:
        ChangeFeed.discard_pending(session)


def _dispatch_after_rollback(session) -> None:
    ChangeFeed.discard_pending(session)


# ── Client merge rule ────────────────────────────────────────────────────────

def merge_event(state: dict, event: ChangeEvent, key: str = "id") -> dict:
    """Apply an event to a local ``{row_id: row}`` mapping and return a new mapping.

    INSERT / UPDATE spread the payload over the previous row; DELETE removes
    it. Applying the same UPDATE twice gives the same result.
    """
    row_id = event.payload.get(key)
    merged = dict(state)
    if event.event_type == "DELETE":
        merged.pop(row_id, None)
    else:
        merged[row_id] = {**state.get(row_id, {}), **event.payload}
    return merged
