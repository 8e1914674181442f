"""
Change feed for table mutations.

Services publish a ChangeEvent after every insert/update/delete; clients
subscribe to a named channel with one or more ChangeFilters, the same shape
as a ``postgres_changes`` subscription:

    feed.subscribe(
        "notifications_for_user_42",
        [ChangeFilter(table="notifications", event="INSERT", row_filter="user_id=eq.42")],
    )

Supports an in-process fallback for tests/local runs and a Redis pub/sub
implementation so several API processes see each other's writes.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol, Sequence

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")
RECONNECT_DELAY_SECONDS = 1.0


@dataclass
class ChangeEvent:
    table: str
    event_type: str
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)
    schema: str = "public"
    commit_timestamp: float = field(default_factory=lambda: time.time())

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.event_type}")

    def to_payload(self) -> dict:
        return {
            "schema": self.schema,
            "table": self.table,
            "eventType": self.event_type,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        return cls(
            table=payload["table"],
            event_type=payload["eventType"],
            new=payload.get("new") or {},
            old=payload.get("old") or {},
            schema=payload.get("schema", "public"),
            commit_timestamp=payload.get("commit_timestamp") or time.time(),
        )


@dataclass
class ChangeFilter:
    table: str
    event: str = "*"
    row_filter: Optional[str] = None
    schema: str = "public"

    def __post_init__(self):
        if self.event != "*" and self.event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.event}")
        self._column: Optional[str] = None
        self._value: Optional[str] = None
        if self.row_filter:
            self._column, self._value = self.parse_row_filter(self.row_filter)

    @staticmethod
    def parse_row_filter(row_filter: str) -> tuple[str, str]:
        """Parse ``column=eq.value`` into ``(column, value)``."""
        column, sep, rest = row_filter.partition("=")
        if not sep or not column.strip() or not rest.startswith("eq."):
            raise ValueError(f"Unsupported row filter: {row_filter!r}")
        return column.strip(), rest[len("eq."):]

    def matches(self, event: ChangeEvent) -> bool:
        if event.schema != self.schema or event.table != self.table:
            return False
        if self.event != "*" and event.event_type != self.event:
            return False
        if self._column is None:
            return True
        record = event.old if event.event_type == "DELETE" else event.new
        if self._column not in record:
            return False
        return str(record[self._column]) == self._value


def emit(
    feed: Optional["ChangeFeed"],
    table: str,
    event_type: str,
    *,
    new: Optional[dict] = None,
    old: Optional[dict] = None,
) -> None:
    """Publish a change after a committed write. Feed failures are logged, not raised."""
    if feed is None:
        return
    event = ChangeEvent(table=table, event_type=event_type, new=new or {}, old=old or {})
    try:
        feed.publish(event)
    except Exception:
        logger.exception("realtime.emit failed for %s %s", event_type, table)


def items_channel() -> tuple[str, list[ChangeFilter]]:
    return "public:items", [ChangeFilter(table="items", event="*")]


def notifications_channel(user_id: str) -> tuple[str, list[ChangeFilter]]:
    return (
        f"notifications_for_user_{user_id}",
        [
            ChangeFilter(
                table="notifications",
                event="INSERT",
                row_filter=f"user_id=eq.{user_id}",
            )
        ],
    )


class Subscription(Protocol):
    channel: str

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        ...

    def unsubscribe(self) -> None:
        ...

    def __iter__(self) -> Iterator[ChangeEvent]:
        ...


class ChangeFeed(Protocol):
    """Minimal publish/subscribe interface for table changes."""

    def publish(self, event: ChangeEvent) -> None:
        ...

    def subscribe(
        self, channel: str, filters: Sequence[ChangeFilter]
    ) -> Subscription:
        ...


def _drain(subscription, timeout: Optional[float]) -> Iterator[ChangeEvent]:
    while not subscription.closed:
        event = subscription.get(timeout=timeout)
        if event is None:
            if timeout is not None:
                return
            continue
        yield event


class InMemorySubscription:
    def __init__(
        self,
        feed: "InMemoryChangeFeed",
        channel: str,
        filters: Sequence[ChangeFilter],
    ):
        self.feed = feed
        self.channel = channel
        self.filters = list(filters)
        self.events: "queue.Queue[ChangeEvent]" = queue.Queue()
        self.closed = False

    def wants(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        try:
            if timeout is not None and timeout <= 0:
                return self.events.get_nowait()
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def unsubscribe(self) -> None:
        self.closed = True
        self.feed._remove(self)

    def __iter__(self) -> Iterator[ChangeEvent]:
        # Non-blocking: yields whatever is already queued.
        return _drain(self, timeout=0)


class InMemoryChangeFeed:
    """Thread-safe in-process fan-out for tests and single-process dev."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: list[InMemorySubscription] = []
        self.published: list[ChangeEvent] = []

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            self.published.append(event)
            targets = [s for s in self._subscriptions if s.wants(event)]
        for subscription in targets:
            subscription.events.put(event)

    def subscribe(
        self, channel: str, filters: Sequence[ChangeFilter]
    ) -> InMemorySubscription:
        subscription = InMemorySubscription(self, channel, filters)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _remove(self, subscription: InMemorySubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def reset(self) -> None:
        with self._lock:
            self._subscriptions.clear()
            self.published.clear()


class RedisSubscription:
    def __init__(
        self,
        feed: "RedisChangeFeed",
        channel: str,
        filters: Sequence[ChangeFilter],
    ):
        self.feed = feed
        self.channel = channel
        self.filters = list(filters)
        self.closed = False
        self.pubsub = None
        self._connect()

    def _connect(self) -> None:
        pubsub = self.feed.client.pubsub(ignore_subscribe_messages=True)
        topics = sorted({self.feed.topic(f.table) for f in self.filters})
        pubsub.subscribe(*topics)
        self.pubsub = pubsub

    def _close_pubsub(self) -> None:
        pubsub, self.pubsub = self.pubsub, None
        if pubsub is None:
            return
        try:
            pubsub.close()
        except redis_exceptions.ConnectionError:
            logger.debug("Realtime connection already closed on %s", self.channel)

    def _reconnect(self) -> bool:
        # Only this subscription's pubsub is replaced; the client's pool is shared.
        self._close_pubsub()
        try:
            self._connect()
        except redis_exceptions.ConnectionError:
            logger.warning("Realtime reconnect failed on %s", self.channel)
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.closed:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if self.pubsub is None and not self._reconnect():
                delay = RECONNECT_DELAY_SECONDS
                if remaining is not None:
                    delay = min(remaining, delay)
                time.sleep(delay)
                return None
            try:
                message = self.pubsub.get_message(timeout=remaining if remaining is not None else 1.0)
            except redis_exceptions.ConnectionError:
                # Managed Redis drops idle connections; reconnect and report no event.
                logger.warning("Realtime connection lost on %s, reconnecting", self.channel)
                self._reconnect()
                return None
            if message and message.get("type") == "message":
                try:
                    event = ChangeEvent.from_payload(json.loads(message["data"]))
                except (ValueError, KeyError, TypeError):
                    logger.warning("Dropping malformed change payload on %s", self.channel)
                    event = None
                if event and any(f.matches(event) for f in self.filters):
                    return event
            if deadline is not None and time.monotonic() >= deadline:
                return None
        return None

    def unsubscribe(self) -> None:
        self.closed = True
        if self.pubsub is None:
            return
        try:
            self.pubsub.unsubscribe()
        except redis_exceptions.ConnectionError:
            logger.debug("Realtime connection already closed on %s", self.channel)
        self._close_pubsub()

    def __iter__(self) -> Iterator[ChangeEvent]:
        return _drain(self, timeout=None)


@dataclass
class RedisChangeFeed:
    """Redis pub/sub feed; one topic per table."""

    url: str
    channel_prefix: str = "rewear:changes"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def topic(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    def publish(self, event: ChangeEvent) -> None:
        self.client.publish(
            self.topic(event.table), json.dumps(event.to_payload(), default=str)
        )

    def subscribe(
        self, channel: str, filters: Sequence[ChangeFilter]
    ) -> RedisSubscription:
        return RedisSubscription(self, channel, filters)
