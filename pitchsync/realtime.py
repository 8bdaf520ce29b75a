"""In-process change feed for the ``messages`` and ``pitches`` tables.

Events are "something changed" signals: table, event type, row id and the
row's key columns. Consumers re-run their query after each event and never
patch local state from the payload.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable

log = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")
ALL_EVENTS = "*"


@dataclass
class ChangeEvent:
    table: str
    event: str
    record: dict[str, Any] = field(default_factory=dict)

    @property
    def row_id(self) -> Any:
        return self.record.get("id")

    def as_dict(self) -> dict[str, Any]:
        return {"table": self.table, "event": self.event, "id": self.row_id, "record": self.record}


Callback = Callable[[ChangeEvent], None]
Match = dict[str, Any] | Callable[[dict[str, Any]], bool] | None


def _normalize_events(events: str | Iterable[str]) -> frozenset[str]:
    if events == ALL_EVENTS:
        return frozenset(EVENT_TYPES)
    if isinstance(events, str):
        events = [events]
    chosen = frozenset(e.upper() for e in events)
    unknown = chosen - set(EVENT_TYPES)
    if unknown:
        raise ValueError(f"Unknown event type(s): {', '.join(sorted(unknown))}")
    return chosen


def _matches(match: Match, record: dict[str, Any]) -> bool:
    if match is None:
        return True
    if callable(match):
        return bool(match(record))
    return all(record.get(k) == v for k, v in match.items())


@dataclass
class _Subscription:
    table: str
    events: frozenset[str]
    callback: Callback
    match: Match


class ChangeFeed:
    """Fan-out of row changes to subscribers, filtered by table, event and columns."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[_Subscription] = []

    def subscribe(
        self, table: str, events: str | Iterable[str], callback: Callback, match: Match = None,
    ) -> Callable[[], None]:
        """Register *callback*; returns a function that removes it again."""
        sub = _Subscription(table, _normalize_events(events), callback, match)
        with self._lock:
            self._subs.append(sub)

        def unsubscribe() -> None:
            with self._lock:
                if sub in self._subs:
                    self._subs.remove(sub)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, table: str, event: str, record: dict[str, Any]) -> int:
        """Deliver a change to every matching subscriber. Returns the delivery count.

        A subscriber that raises is logged and skipped.
        """
        change = ChangeEvent(table=table, event=event.upper(), record=dict(record))
        with self._lock:
            targets = [
                s for s in self._subs
                if s.table == table and change.event in s.events and _matches(s.match, change.record)
            ]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(change)
                delivered += 1
            except Exception as exc:
                log.warning("Change subscriber failed for %s %s: %s", table, change.event, exc)
        return delivered

    async def listen(
        self, table: str, events: str | Iterable[str] = ALL_EVENTS, match: Match = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Async iterator over matching changes; unsubscribes when the consumer stops."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

        def enqueue(change: ChangeEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, change)

        unsubscribe = self.subscribe(table, events, enqueue, match)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()


_default_feed = ChangeFeed()


def get_feed() -> ChangeFeed:
    return _default_feed
