"""
Change notification bus for Legato tables.

Subscribers learn that a table's in-memory value changed independently of
when (or whether) the change is written to disk. Write completion and write
failures are published as separate events.

Event types:
- table.changed: in-memory value of a table changed
- table.saved: a debounced write for a table reached the disk
- table.save_failed: a write failed (logged, not retried)
- table.deleted: a table and its file were removed

Usage:
    events = EventBus()

    def on_change(event: TableChangedEvent) -> None:
        print(f"{event.table} changed")

    unsubscribe = events.subscribe("table.changed", on_change)
    events.publish(TableChangedEvent(table="settings"))
    unsubscribe()

Handlers may be plain functions or coroutine functions. Plain handlers run
inline, in subscription order; coroutines are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from legato.core.changes import Change

logger = logging.getLogger(__name__)

# Type alias for event handlers (sync, or async returning an awaitable)
EventHandler = Callable[["Event"], Any]


@dataclass
class Event:
    """Base class for all events."""

    event_type: str = ""
    table: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {"type": self.event_type, "table": self.table}


@dataclass
class TableChangedEvent(Event):
    """Fired after a table's in-memory value was mutated."""

    event_type: str = field(default="table.changed", init=False)
    changes: tuple[Change, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "table": self.table,
            "paths": [list(c.path) for c in self.changes],
        }


@dataclass
class TableSavedEvent(Event):
    """Fired when a table's value has been written (or its file removed)."""

    event_type: str = field(default="table.saved", init=False)
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type, "table": self.table, "size": self.size}


@dataclass
class TableSaveFailedEvent(Event):
    """Fired when writing a table failed."""

    event_type: str = field(default="table.save_failed", init=False)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type, "table": self.table, "error": self.error}


@dataclass
class TableDeletedEvent(Event):
    """Fired when a table was deleted."""

    event_type: str = field(default="table.deleted", init=False)


class EventBus:
    """
    Simple pub/sub event bus.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions (e.g., "table.*")
    - Sync and async handlers
    - Error isolation (one handler failing doesn't affect others)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], bool]:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to subscribe to. Use ".*" suffix for wildcards.
            handler: Function called with each matching event.

        Returns:
            A callable that removes this subscription.
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug("Subscribed to %s: %s", event_type, handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns True if handler was found and removed.
        """
        handlers = self._handlers.get(event_type)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
        except ValueError:
            return False
        logger.debug("Unsubscribed from %s: %s", event_type, handler)
        return True

    def _matching(self, event_type: str) -> list[EventHandler]:
        matching: list[EventHandler] = list(self._handlers.get(event_type, ()))
        for pattern, handlers in self._handlers.items():
            if pattern == "*":
                matching.extend(handlers)
            elif pattern.endswith(".*") and event_type.startswith(pattern[:-1]):
                matching.extend(handlers)
        return matching

    def publish(self, event: Event) -> int:
        """
        Publish an event to all subscribed handlers.

        Args:
            event: The event to publish.

        Returns:
            Number of handlers that received the event.
        """
        handlers_called = 0

        for handler in self._matching(event.event_type):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
                handlers_called += 1
            except Exception as e:
                logger.exception("Error in event handler for %s: %s", event.event_type, e)

        return handlers_called

    def _schedule(self, awaitable: Any, event: Event) -> None:
        async def _run() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.exception("Error in async event handler for %s: %s", event.event_type, e)

        try:
            task = asyncio.get_running_loop().create_task(_run())
        except RuntimeError:
            # No running event loop
            logger.warning("Cannot run async handler for %s: no running event loop", event.event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._handlers.clear()
        logger.debug("Cleared all event subscriptions")
